"""Symbol download clients.

``SymbolClient`` and ``AsyncSymbolClient`` bundle a server list, a transport
and the usual bookkeeping (statistics, progress reporting, console output)
around the retrieval functions in ``symsrv.orchestrator``.
"""
from __future__ import annotations

import asyncio
import sys
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, Union

from .config import Settings
from .errors import NotFoundError, SymSrvError
from .identifiers import SymFileInfo
from .orchestrator import (
    DownloadStatus,
    RetrievalResult,
    adownload_symbol,
    download_symbol,
)
from .servers import SymSrvList, SymSrvSpec, parse_server_list
from .transport import AsyncTransport, HttpxAsyncTransport, RequestsTransport, Transport

ProgressCallback = Callable[[str, int, int], None]
DownloadItem = Tuple[SymFileInfo, str]
BatchResult = Dict[DownloadItem, Union[RetrievalResult, Exception]]


def safe_print(msg: str):
    """Print message safely, handling unicode encoding issues on Windows."""
    try:
        print(msg)
    except UnicodeEncodeError:
        encoding = sys.stdout.encoding or 'utf-8'
        print(msg.encode(encoding, errors='replace').decode(encoding, errors='replace'))


def _as_server_list(servers: Union[str, SymSrvList, Iterable[SymSrvSpec]]) -> SymSrvList:
    if isinstance(servers, str):
        return parse_server_list(servers)
    if isinstance(servers, SymSrvList):
        return servers
    return SymSrvList(servers)


class _ClientBase:
    """Shared state of the blocking and asyncio clients."""

    def __init__(self, servers=None, settings: Optional[Settings] = None,
                 progress_callback: Optional[ProgressCallback] = None):
        self.settings = settings or Settings.from_env()
        self.servers = _as_server_list(servers if servers is not None else self.settings.servers())
        self.verbose = self.settings.verbose
        self.progress_callback = progress_callback
        self._stats_lock = threading.Lock()

        # Statistics
        self.stats = {
            'symbols_downloaded': 0,
            'symbols_cached': 0,
            'symbols_not_found': 0,
            'symbols_failed': 0,
        }

    def _log(self, message: str):
        """Log a message if verbose mode is enabled."""
        if self.verbose:
            safe_print(f"[SYMSRV] {message}")

    def _report_progress(self, message: str, current: int = 0, total: int = 0):
        if self.progress_callback:
            self.progress_callback(message, current, total)

    def _count(self, outcome: Union[RetrievalResult, Exception]):
        if isinstance(outcome, RetrievalResult):
            key = ('symbols_cached' if outcome.status is DownloadStatus.ALREADY_EXISTS
                   else 'symbols_downloaded')
        elif isinstance(outcome, NotFoundError):
            key = 'symbols_not_found'
        else:
            key = 'symbols_failed'
        with self._stats_lock:
            self.stats[key] += 1

    def get_statistics(self) -> Dict[str, Any]:
        """Get download statistics."""
        with self._stats_lock:
            return {'servers': len(self.servers), **self.stats}

    def get_cache_size(self) -> int:
        """Total size in bytes of the files under every server's cache."""
        total = 0
        for root in {spec.cache_path for spec in self.servers}:
            if not root.is_dir():
                continue
            for path in root.rglob('*'):
                if path.is_file():
                    total += path.stat().st_size
        return total


class SymbolClient(_ClientBase):
    """
    Blocking symbol downloader.

    Example:
        client = SymbolClient("SRV*C:\\Symbols*https://msdl.microsoft.com/download/symbols")
        result = client.download(PdbInfo(guid, age), "ntdll.pdb")
    """

    def __init__(self, servers=None, transport: Optional[Transport] = None,
                 settings: Optional[Settings] = None,
                 progress_callback: Optional[ProgressCallback] = None):
        super().__init__(servers, settings, progress_callback)
        if transport is None:
            transport = RequestsTransport(
                timeout=self.settings.timeout,
                user_agent=self.settings.user_agent,
                max_retries=self.settings.max_retries,
                backoff_factor=self.settings.backoff_factor,
            )
            self._owns_transport = True
        else:
            self._owns_transport = False
        self.transport = transport

    def download(self, info: SymFileInfo, filename: str,
                 cancel_event: Optional[threading.Event] = None) -> RetrievalResult:
        """
        Download one symbol file, or find it in a cache.

        Args:
            info: Identity of the symbol file
            filename: File name on the server, e.g. ``ntdll.pdb``
            cancel_event: When set, no further server is tried

        Returns:
            RetrievalResult with the local path of the file

        Raises:
            NotFoundError: no server has the file
            TransportError: the last server failure if any server was unreachable
            StorageError: the downloaded file could not be written
            ValueError: the file name or hash cannot be used as a path component
        """
        self._log(f"Looking up {filename} ({info})")
        try:
            result = download_symbol(info, filename, self.servers, self.transport,
                                     cancel_event=cancel_event, log=self._log)
        except (SymSrvError, ValueError) as e:
            self._count(e)
            raise
        self._count(result)
        return result

    def download_many(self, items: Iterable[DownloadItem], max_workers: int = 4,
                      cancel_event: Optional[threading.Event] = None) -> BatchResult:
        """
        Download several symbol files in parallel.

        Args:
            items: ``(info, filename)`` pairs
            max_workers: Maximum number of concurrent downloads
            cancel_event: Stops pending downloads before their next server

        Returns:
            Mapping from each item to its result or the error it failed with
        """
        items = list(dict.fromkeys(items))
        total = len(items)
        results: BatchResult = {}
        if not items:
            return results

        self._report_progress(f"Downloading {total} symbol files...", 0, total)
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            future_to_item = {
                executor.submit(self.download, info, filename, cancel_event): (info, filename)
                for info, filename in items
            }
            for completed, future in enumerate(as_completed(future_to_item), 1):
                item = future_to_item[future]
                try:
                    results[item] = future.result()
                except (SymSrvError, ValueError) as e:
                    results[item] = e
                    safe_print(f"[SYMSRV] - {item[1]}: {e}")
                self._report_progress(f"Downloaded {completed}/{total}: {item[1]}", completed, total)

        return results

    def close(self):
        if self._owns_transport:
            self.transport.close()

    def __enter__(self) -> "SymbolClient":
        return self

    def __exit__(self, *exc_info):
        self.close()


class AsyncSymbolClient(_ClientBase):
    """Asyncio symbol downloader with the same behaviour as ``SymbolClient``."""

    def __init__(self, servers=None, transport: Optional[AsyncTransport] = None,
                 settings: Optional[Settings] = None,
                 progress_callback: Optional[ProgressCallback] = None):
        super().__init__(servers, settings, progress_callback)
        if transport is None:
            transport = HttpxAsyncTransport(
                timeout=self.settings.timeout,
                user_agent=self.settings.user_agent,
                max_retries=self.settings.max_retries,
            )
            self._owns_transport = True
        else:
            self._owns_transport = False
        self.transport = transport

    async def download(self, info: SymFileInfo, filename: str,
                       cancel_event: Optional[asyncio.Event] = None) -> RetrievalResult:
        """Download one symbol file, or find it in a cache. See ``SymbolClient.download``."""
        self._log(f"Looking up {filename} ({info})")
        try:
            result = await adownload_symbol(info, filename, self.servers, self.transport,
                                            cancel_event=cancel_event, log=self._log)
        except (SymSrvError, ValueError) as e:
            self._count(e)
            raise
        self._count(result)
        return result

    async def download_many(self, items: Iterable[DownloadItem], max_concurrency: int = 4,
                            cancel_event: Optional[asyncio.Event] = None) -> BatchResult:
        """Download several symbol files concurrently. See ``SymbolClient.download_many``."""
        items = list(dict.fromkeys(items))
        total = len(items)
        results: BatchResult = {}
        if not items:
            return results

        semaphore = asyncio.Semaphore(max_concurrency)
        completed = 0

        async def run(item: DownloadItem):
            nonlocal completed
            info, filename = item
            async with semaphore:
                try:
                    results[item] = await self.download(info, filename, cancel_event)
                except (SymSrvError, ValueError) as e:
                    results[item] = e
                    safe_print(f"[SYMSRV] - {filename}: {e}")
            completed += 1
            self._report_progress(f"Downloaded {completed}/{total}: {filename}", completed, total)

        self._report_progress(f"Downloading {total} symbol files...", 0, total)
        await asyncio.gather(*(run(item) for item in items))
        return results

    async def aclose(self):
        if self._owns_transport:
            await self.transport.aclose()

    async def __aenter__(self) -> "AsyncSymbolClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()
