"""symsrv - symbol server client.

This package downloads debug symbol files (PDBs and executables) from
Microsoft-style symbol servers:
- Symbol file identifiers and their canonical hash strings
- ``SRV*<cache>*<server>`` server strings and ``;`` separated server lists
- Single-tier and two-tier (``index2.txt``) cache layouts
- Cache-first retrieval with ordered fallback across servers
- Blocking (requests) and asyncio (httpx) transports
"""
from .errors import (
    SymSrvError,
    ConfigurationError,
    DownloadError,
    NotFoundError,
    TransportError,
    StorageError,
    RetrievalCancelled,
)
from .identifiers import (
    ExeInfo,
    PdbInfo,
    RawHash,
    SymFileInfo,
    hash_string,
)
from .servers import (
    SymSrvSpec,
    SymSrvList,
    parse_server_spec,
    parse_server_list,
)
from .layout import (
    CacheEntry,
    is_two_tier,
    two_tier_prefix,
    relative_path,
    cache_file_path,
    server_file_url,
    resolve_cache_entry,
    write_atomic,
)
from .transport import (
    Transport,
    AsyncTransport,
    RequestsTransport,
    HttpxAsyncTransport,
)
from .orchestrator import (
    DownloadStatus,
    RetrievalResult,
    plan_retrieval,
    download_symbol,
    adownload_symbol,
)
from .config import Settings
from .client import SymbolClient, AsyncSymbolClient

__all__ = [
    # Errors
    "SymSrvError",
    "ConfigurationError",
    "DownloadError",
    "NotFoundError",
    "TransportError",
    "StorageError",
    "RetrievalCancelled",
    # Identifiers
    "ExeInfo",
    "PdbInfo",
    "RawHash",
    "SymFileInfo",
    "hash_string",
    # Server strings
    "SymSrvSpec",
    "SymSrvList",
    "parse_server_spec",
    "parse_server_list",
    # Cache layout
    "CacheEntry",
    "is_two_tier",
    "two_tier_prefix",
    "relative_path",
    "cache_file_path",
    "server_file_url",
    "resolve_cache_entry",
    "write_atomic",
    # Transports
    "Transport",
    "AsyncTransport",
    "RequestsTransport",
    "HttpxAsyncTransport",
    # Retrieval
    "DownloadStatus",
    "RetrievalResult",
    "plan_retrieval",
    "download_symbol",
    "adownload_symbol",
    # Clients
    "Settings",
    "SymbolClient",
    "AsyncSymbolClient",
]

__version__ = "1.0.0"
