"""Parsing of ``SRV*<cache_path>*<server_url>`` symbol server strings."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional, Tuple, Union, overload

from .errors import ConfigurationError, SPEC_FORM_MESSAGE

SPEC_SEPARATOR = "*"
LIST_SEPARATOR = ";"
SRV_DIRECTIVE = "SRV"


@dataclass(frozen=True)
class SymSrvSpec:
    """A symbol server, defined by the user with the syntax ``SRV*<cache_path>*<server_url>``."""
    # The base URL for a symbol server, e.g: https://msdl.microsoft.com/download/symbols
    server_url: str
    # The base path for the local symbol cache, e.g: C:\Symcache
    cache_path: Path
    # Cache path exactly as written in the parsed string; pathlib normalises
    # "" to "." and drops trailing separators
    cache_text: Optional[str] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        if not self.server_url:
            raise ConfigurationError(SPEC_FORM_MESSAGE)
        if not isinstance(self.cache_path, Path):
            object.__setattr__(self, "cache_path", Path(self.cache_path))

    def __str__(self) -> str:
        cache = self.cache_text if self.cache_text is not None else self.cache_path
        return f"SRV{SPEC_SEPARATOR}{cache}{SPEC_SEPARATOR}{self.server_url}"

    @classmethod
    def parse(cls, text: str) -> "SymSrvSpec":
        return parse_server_spec(text)


class SymSrvList:
    """Ordered list of symbol servers; the first entry is tried first."""

    def __init__(self, specs):
        specs = tuple(specs)
        if not specs:
            raise ConfigurationError("Invalid server string")
        self._specs: Tuple[SymSrvSpec, ...] = specs

    @classmethod
    def parse(cls, text: str) -> "SymSrvList":
        return parse_server_list(text)

    def __iter__(self) -> Iterator[SymSrvSpec]:
        return iter(self._specs)

    def __len__(self) -> int:
        return len(self._specs)

    @overload
    def __getitem__(self, index: int) -> SymSrvSpec: ...

    @overload
    def __getitem__(self, index: slice) -> Tuple[SymSrvSpec, ...]: ...

    def __getitem__(self, index: Union[int, slice]):
        return self._specs[index]

    def __eq__(self, other) -> bool:
        if isinstance(other, SymSrvList):
            return self._specs == other._specs
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._specs)

    def __repr__(self) -> str:
        return f"SymSrvList({list(self._specs)!r})"

    def __str__(self) -> str:
        return LIST_SEPARATOR.join(str(spec) for spec in self._specs)


def parse_server_spec(text: str) -> SymSrvSpec:
    """
    Parse a single ``SRV*<cache_path>*<server_url>`` string.

    The ``SRV`` keyword is matched case-insensitively. Cache path and URL are
    kept verbatim.

    Raises:
        ConfigurationError: for any other form
    """
    directives = text.split(SPEC_SEPARATOR)

    # Only the SRV form with exactly one cache and one server is supported
    if directives[0].lower() != SRV_DIRECTIVE.lower() or len(directives) != 3:
        raise ConfigurationError(SPEC_FORM_MESSAGE)

    _, cache_path, server_url = directives
    return SymSrvSpec(server_url=server_url, cache_path=Path(cache_path), cache_text=cache_path)


def parse_server_list(text: str) -> SymSrvList:
    """
    Parse a semicolon-separated list of server strings.

    Parsing stops at the first malformed entry; no partial list is returned.
    """
    return SymSrvList(parse_server_spec(part) for part in text.split(LIST_SEPARATOR))
