"""Cache-first, multi-server retrieval of symbol files.

The retrieval logic lives in one generator, ``plan_retrieval``. It never does
I/O itself: it yields a request (``ResolveCache``, ``Fetch`` or ``Store``) and
is resumed with the result, or has the request's exception thrown back into
it. ``download_symbol`` drives it with blocking calls and ``adownload_symbol``
drives it from asyncio, so both behave identically.

For every server, in list order:

1. look the file up in that server's cache; a hit ends the request,
2. otherwise GET ``<server_url>/<name>/<hash>/<name>``,
3. a 404 or a transport failure moves on to the next server,
4. a successful download is written atomically into that server's cache.

When every server has failed, a ``NotFoundError`` is raised if they all
answered 404; otherwise the most recent real failure is raised with the whole
chain of attempts attached.
"""
from __future__ import annotations

import asyncio
import functools
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Generator, Iterable, List, Optional, Union

from .errors import (
    DownloadError,
    NotFoundError,
    RetrievalCancelled,
    StorageError,
    SymSrvError,
    TransportError,
)
from .identifiers import SymFileInfo, hash_string
from .layout import relative_path, resolve_cache_entry, server_file_url, write_atomic
from .servers import SymSrvSpec
from .transport import AsyncTransport, Transport

LogFn = Callable[[str], None]


class DownloadStatus(Enum):
    # The symbol file already exists in the filesystem.
    ALREADY_EXISTS = "already_exists"
    # The symbol file was successfully downloaded from the remote server.
    DOWNLOADED_OK = "downloaded_ok"


@dataclass(frozen=True)
class RetrievalResult:
    """Outcome of a successful retrieval."""
    status: DownloadStatus
    path: Path
    server: SymSrvSpec


@dataclass(frozen=True)
class ResolveCache:
    """Look the file up in one server's cache. Marks the start of an attempt."""
    server: SymSrvSpec
    filename: str
    hash: str


@dataclass(frozen=True)
class Fetch:
    server: SymSrvSpec
    url: str


@dataclass(frozen=True)
class Store:
    path: Path
    data: bytes


Request = Union[ResolveCache, Fetch, Store]
RetrievalPlan = Generator[Request, Any, RetrievalResult]


def _nolog(message: str):
    pass


def plan_retrieval(info: SymFileInfo, filename: str,
                   servers: Iterable[SymSrvSpec],
                   log: LogFn = _nolog) -> RetrievalPlan:
    """
    Generator implementing the retrieval protocol for one symbol file.

    Yields I/O requests and returns the ``RetrievalResult`` through
    ``StopIteration``. Errors from a request are thrown back in by the driver.

    Raises:
        ValueError: if ``filename`` cannot be used as a path component
        NotFoundError: every server answered 404
        TransportError: last real failure after exhausting the servers
        StorageError: writing a downloaded file failed
    """
    hash_str = hash_string(info)
    relative_path(filename, hash_str)
    servers = list(servers)
    if not servers:
        raise ValueError("no symbol servers given")

    failures: List[SymSrvError] = []
    for server in servers:
        try:
            entry = yield ResolveCache(server, filename, hash_str)
        except StorageError as e:
            log(f"- cache unreadable for {server}: {e}")
            failures.append(e)
            continue

        if entry.exists:
            log(f"+ {filename} (cached at {entry.path})")
            return RetrievalResult(DownloadStatus.ALREADY_EXISTS, entry.path, server)

        url = server_file_url(server.server_url, filename, hash_str)
        try:
            data = yield Fetch(server, url)
        except NotFoundError as e:
            log(f"  {url} -> not found")
            failures.append(e)
            continue
        except TransportError as e:
            log(f"- {url} -> {e}")
            failures.append(e)
            continue

        # Store errors propagate: the data was in hand and could not be kept
        yield Store(entry.path, data)
        log(f"+ Downloaded {filename} ({len(data)} bytes) from {server.server_url}")
        return RetrievalResult(DownloadStatus.DOWNLOADED_OK, entry.path, server)

    raise _exhausted(filename, hash_str, failures)


def _exhausted(filename: str, hash_str: str, failures: List[SymSrvError]) -> SymSrvError:
    """Pick the error reported once every server has been tried."""
    real = [f for f in failures if not isinstance(f, NotFoundError)]
    if not real:
        return NotFoundError(
            f"{filename} ({hash_str}) not found on any symbol server",
            attempts=failures, filename=filename, hash=hash_str,
        )

    last = real[-1]
    if isinstance(last, StorageError):
        error: SymSrvError = StorageError(str(last), path=last.path, attempts=failures)
    else:
        error = TransportError(str(last), url=last.url, attempts=failures,
                               status_code=getattr(last, "status_code", None))
    error.__cause__ = last
    return error


def _resolve(request: ResolveCache):
    return resolve_cache_entry(request.server.cache_path, request.filename, request.hash)


def download_symbol(info: SymFileInfo, filename: str,
                    servers: Iterable[SymSrvSpec],
                    transport: Transport,
                    cancel_event: Optional[threading.Event] = None,
                    log: LogFn = _nolog) -> RetrievalResult:
    """
    Retrieve a symbol file, blocking the calling thread.

    Args:
        info: Identity of the symbol file
        filename: File name on the server, e.g. ``ntdll.pdb``
        servers: Servers in priority order
        transport: Blocking transport used for downloads
        cancel_event: When set, no further server is tried
        log: Receives progress messages

    Returns:
        RetrievalResult describing where the file now lives
    """
    plan = plan_retrieval(info, filename, servers, log)
    try:
        request = next(plan)
        while True:
            try:
                if isinstance(request, ResolveCache):
                    if cancel_event is not None and cancel_event.is_set():
                        raise RetrievalCancelled(f"retrieval of {filename} cancelled")
                    result = _resolve(request)
                elif isinstance(request, Fetch):
                    result = transport.fetch(request.url)
                else:
                    result = write_atomic(request.path, request.data)
            except (DownloadError, StorageError) as e:
                request = plan.throw(e)
            else:
                request = plan.send(result)
    except StopIteration as stop:
        return stop.value
    finally:
        plan.close()


async def adownload_symbol(info: SymFileInfo, filename: str,
                           servers: Iterable[SymSrvSpec],
                           transport: AsyncTransport,
                           cancel_event: Optional[asyncio.Event] = None,
                           log: LogFn = _nolog) -> RetrievalResult:
    """
    Retrieve a symbol file from asyncio code.

    Same protocol as ``download_symbol``. Filesystem work runs in the default
    executor so the event loop is never blocked. Cancelling the task stops the
    retrieval; cache files are only ever published complete.
    """
    loop = asyncio.get_running_loop()
    plan = plan_retrieval(info, filename, servers, log)
    try:
        request = next(plan)
        while True:
            try:
                if isinstance(request, ResolveCache):
                    if cancel_event is not None and cancel_event.is_set():
                        raise RetrievalCancelled(f"retrieval of {filename} cancelled")
                    result = await loop.run_in_executor(None, _resolve, request)
                elif isinstance(request, Fetch):
                    result = await transport.fetch(request.url)
                else:
                    result = await loop.run_in_executor(
                        None, functools.partial(write_atomic, request.path, request.data))
            except (DownloadError, StorageError) as e:
                request = plan.throw(e)
            else:
                request = plan.send(result)
    except StopIteration as stop:
        return stop.value
    finally:
        plan.close()
