"""Exception hierarchy for symbol server lookups.

Errors fall in two groups: problems with the user's configuration, which are
raised before any I/O happens, and per-server download failures, which drive
fallback to the next server and are only surfaced once every server has been
tried.
"""
from __future__ import annotations

from typing import Optional, Sequence, Tuple

SPEC_FORM_MESSAGE = (
    "Unsupported server string form; only 'SRV*<CACHE_PATH>*<SYMBOL_SERVER>' supported"
)


class SymSrvError(Exception):
    """Base class for all symsrv errors."""


class ConfigurationError(SymSrvError):
    """Malformed server string or invalid setting."""


class DownloadError(SymSrvError):
    """A single server could not provide the requested file."""

    def __init__(self, message: str, url: Optional[str] = None,
                 attempts: Sequence[SymSrvError] = ()):
        super().__init__(message)
        self.url = url
        # Ordered failures from every server tried, filled in on exhaustion
        self.attempts: Tuple[SymSrvError, ...] = tuple(attempts)


class NotFoundError(DownloadError):
    """Server returned 404 not found. Try the next one."""

    def __init__(self, message: str = "server returned 404 not found",
                 url: Optional[str] = None,
                 attempts: Sequence[SymSrvError] = (),
                 filename: Optional[str] = None,
                 hash: Optional[str] = None):
        super().__init__(message, url=url, attempts=attempts)
        self.filename = filename
        self.hash = hash


class TransportError(DownloadError):
    """Connectivity, protocol or timeout failure talking to a server."""

    def __init__(self, message: str = "error requesting file",
                 url: Optional[str] = None,
                 attempts: Sequence[SymSrvError] = (),
                 status_code: Optional[int] = None):
        super().__init__(message, url=url, attempts=attempts)
        self.status_code = status_code


class StorageError(SymSrvError):
    """Reading or writing the local symbol cache failed."""

    def __init__(self, message: str, path=None,
                 attempts: Sequence[SymSrvError] = ()):
        super().__init__(message)
        self.path = path
        self.attempts: Tuple[SymSrvError, ...] = tuple(attempts)


class RetrievalCancelled(SymSrvError):
    """The caller cancelled a retrieval between server attempts."""
