"""Settings read from the environment.

``_NT_SYMBOL_PATH`` is the same variable the Windows debuggers read, so an
existing debugger setup is picked up as is. Everything else uses the
``SYMSRV_`` prefix. The launcher loads a ``.env`` file first, so values can
also live there.
"""
from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigurationError
from .servers import SymSrvList, parse_server_list
from .transport import (
    DEFAULT_BACKOFF_FACTOR,
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
)

MICROSOFT_SYMBOL_SERVER = "https://msdl.microsoft.com/download/symbols"

SYMBOL_PATH_ENV = "_NT_SYMBOL_PATH"
CACHE_ENV = "SYMSRV_CACHE"
TIMEOUT_ENV = "SYMSRV_TIMEOUT"
MAX_RETRIES_ENV = "SYMSRV_MAX_RETRIES"
BACKOFF_ENV = "SYMSRV_BACKOFF"
USER_AGENT_ENV = "SYMSRV_USER_AGENT"
VERBOSE_ENV = "SYMSRV_VERBOSE"

_TRUE_VALUES = {"1", "true", "yes", "on"}

MIN_TIMEOUT = 0.001


def default_cache_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Default local symbol cache directory."""
    environ = os.environ if environ is None else environ
    if environ.get(CACHE_ENV):
        return Path(environ[CACHE_ENV])
    # Windows debugger default: %LOCALAPPDATA%\dbg\sym
    if os.name == "nt" and environ.get("LOCALAPPDATA"):
        return Path(environ["LOCALAPPDATA"]) / "dbg" / "sym"
    return Path(tempfile.gettempdir()) / "symbols"


def default_symbol_path(environ: Optional[Mapping[str, str]] = None) -> str:
    return f"SRV*{default_cache_dir(environ)}*{MICROSOFT_SYMBOL_SERVER}"


def _number(environ: Mapping[str, str], name: str, default, kind, minimum):
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = kind(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be a {kind.__name__}, got {raw!r}") from None
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {raw!r}")
    return value


@dataclass
class Settings:
    """Symbol server client configuration."""
    symbol_path: str
    timeout: float = DEFAULT_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR
    user_agent: str = DEFAULT_USER_AGENT
    verbose: bool = False

    def __post_init__(self):
        if self.timeout < MIN_TIMEOUT:
            raise ConfigurationError(f"timeout must be >= {MIN_TIMEOUT}, got {self.timeout!r}")
        if self.max_retries < 0:
            raise ConfigurationError(f"max_retries must be >= 0, got {self.max_retries!r}")
        if self.backoff_factor < 0:
            raise ConfigurationError(f"backoff_factor must be >= 0, got {self.backoff_factor!r}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Raises:
            ConfigurationError: if a numeric variable is malformed
        """
        environ = os.environ if environ is None else environ
        symbol_path = environ.get(SYMBOL_PATH_ENV) or default_symbol_path(environ)
        return cls(
            symbol_path=symbol_path,
            timeout=_number(environ, TIMEOUT_ENV, DEFAULT_TIMEOUT, float, MIN_TIMEOUT),
            max_retries=_number(environ, MAX_RETRIES_ENV, DEFAULT_MAX_RETRIES, int, 0),
            backoff_factor=_number(environ, BACKOFF_ENV, DEFAULT_BACKOFF_FACTOR, float, 0.0),
            user_agent=environ.get(USER_AGENT_ENV) or DEFAULT_USER_AGENT,
            verbose=environ.get(VERBOSE_ENV, "").strip().lower() in _TRUE_VALUES,
        )

    def override(self, **changes) -> "Settings":
        """Copy with some values replaced; the copy is validated again."""
        return replace(self, **changes)

    def servers(self) -> SymSrvList:
        """Parse ``symbol_path`` into the ordered server list."""
        return parse_server_list(self.symbol_path)
