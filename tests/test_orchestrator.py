"""Tests for cache-first, multi-server symbol retrieval."""
import asyncio
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from symsrv.errors import (
    NotFoundError,
    RetrievalCancelled,
    StorageError,
    TransportError,
)
from symsrv.identifiers import ExeInfo, PdbInfo, RawHash
from symsrv.layout import resolve_cache_entry
from symsrv.orchestrator import (
    DownloadStatus,
    Fetch,
    ResolveCache,
    Store,
    adownload_symbol,
    download_symbol,
    plan_retrieval,
)
from symsrv.servers import SymSrvList, SymSrvSpec

PDB = PdbInfo(guid=0x1EB1C2E2A2D4F5E0B6C73D2B0B61A4A1, age=1)
PDB_HASH = "1EB1C2E2A2D4F5E0B6C73D2B0B61A4A11"
NAME = "ntdll.pdb"


class FakeTransport:
    """Blocking transport answering from a url -> bytes/exception table."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.calls = []

    def fetch(self, url):
        self.calls.append(url)
        answer = self.responses.get(url)
        if answer is None:
            raise NotFoundError(url=url)
        if isinstance(answer, Exception):
            raise answer
        return answer


class FakeAsyncTransport(FakeTransport):
    async def fetch(self, url):
        await asyncio.sleep(0)
        return FakeTransport.fetch(self, url)


def _servers(tmp_path, count=2):
    return SymSrvList(
        SymSrvSpec(server_url=f"https://server{i}.example.com/symbols", cache_path=tmp_path / f"cache{i}")
        for i in range(1, count + 1)
    )


def _url(server, name=NAME, hash_str=PDB_HASH):
    return f"{server.server_url}/{name}/{hash_str}/{name}"


def _drivers():
    def blocking(info, name, servers, transport, **kwargs):
        return download_symbol(info, name, servers, transport, **kwargs)

    def asynchronous(info, name, servers, transport, **kwargs):
        if not isinstance(transport, FakeAsyncTransport):
            async_transport = FakeAsyncTransport(transport.responses)
            async_transport.calls = transport.calls
            transport = async_transport
        return asyncio.run(adownload_symbol(info, name, servers, transport, **kwargs))

    return [blocking, asynchronous]


@pytest.fixture(params=_drivers(), ids=["blocking", "asyncio"])
def retrieve(request):
    return request.param


def test_fallback_to_second_server(tmp_path, retrieve):
    """Server 1 answers 404, server 2 has the file."""
    servers = _servers(tmp_path)
    transport = FakeTransport({_url(servers[1]): b"PDB DATA"})

    result = retrieve(PDB, NAME, servers, transport)

    assert result.status is DownloadStatus.DOWNLOADED_OK
    assert result.server == servers[1]
    expected = servers[1].cache_path / NAME / PDB_HASH / NAME
    assert result.path == expected
    assert expected.read_bytes() == b"PDB DATA"
    assert not servers[0].cache_path.exists()
    assert transport.calls == [_url(servers[0]), _url(servers[1])]


def test_cache_hit_skips_network(tmp_path, retrieve):
    servers = _servers(tmp_path)
    cached = servers[0].cache_path / NAME / PDB_HASH / NAME
    cached.parent.mkdir(parents=True)
    cached.write_bytes(b"cached")
    transport = FakeTransport({_url(servers[0]): b"fresh"})

    result = retrieve(PDB, NAME, servers, transport)

    assert result.status is DownloadStatus.ALREADY_EXISTS
    assert result.path == cached
    assert transport.calls == []
    assert cached.read_bytes() == b"cached"


def test_cache_hit_on_second_server_after_first_miss(tmp_path, retrieve):
    """Each server's cache is checked just before that server is tried."""
    servers = _servers(tmp_path)
    cached = servers[1].cache_path / NAME / PDB_HASH / NAME
    cached.parent.mkdir(parents=True)
    cached.write_bytes(b"cached")
    transport = FakeTransport()

    result = retrieve(PDB, NAME, servers, transport)

    assert result.status is DownloadStatus.ALREADY_EXISTS
    assert result.server == servers[1]
    assert transport.calls == [_url(servers[0])]


def test_two_tier_cache(tmp_path, retrieve):
    servers = _servers(tmp_path, count=1)
    servers[0].cache_path.mkdir()
    (servers[0].cache_path / "index2.txt").write_text("")
    transport = FakeTransport({_url(servers[0]): b"data"})

    result = retrieve(PDB, NAME, servers, transport)

    assert result.path == servers[0].cache_path / "nt" / NAME / PDB_HASH / NAME
    assert result.path.read_bytes() == b"data"


def test_exe_identifier(tmp_path, retrieve):
    servers = _servers(tmp_path, count=1)
    info = ExeInfo(timestamp=0x5F4, size=0x2000)
    url = _url(servers[0], "ntdll.dll", "000005f42000")
    transport = FakeTransport({url: b"MZ"})

    result = retrieve(info, "ntdll.dll", servers, transport)

    assert result.status is DownloadStatus.DOWNLOADED_OK
    assert transport.calls == [url]


def test_all_not_found(tmp_path, retrieve):
    servers = _servers(tmp_path)
    transport = FakeTransport()

    with pytest.raises(NotFoundError) as exc_info:
        retrieve(PDB, NAME, servers, transport)

    error = exc_info.value
    assert error.filename == NAME
    assert error.hash == PDB_HASH
    assert error.url is None
    assert len(error.attempts) == 2
    assert all(isinstance(a, NotFoundError) for a in error.attempts)
    assert not (tmp_path / "cache1").exists()
    assert not (tmp_path / "cache2").exists()


def test_transport_error_falls_through(tmp_path, retrieve):
    servers = _servers(tmp_path)
    transport = FakeTransport({
        _url(servers[0]): TransportError("connection refused", url=_url(servers[0])),
        _url(servers[1]): b"data",
    })

    result = retrieve(PDB, NAME, servers, transport)

    assert result.status is DownloadStatus.DOWNLOADED_OK
    assert result.server == servers[1]


def test_transport_error_preferred_over_not_found(tmp_path, retrieve):
    servers = _servers(tmp_path, count=3)
    transport = FakeTransport({
        _url(servers[1]): TransportError("timed out", url=_url(servers[1])),
    })

    with pytest.raises(TransportError) as exc_info:
        retrieve(PDB, NAME, servers, transport)

    error = exc_info.value
    assert "timed out" in str(error)
    assert error.url == _url(servers[1])
    assert [type(a) for a in error.attempts] == [NotFoundError, TransportError, NotFoundError]
    assert error.__cause__ is error.attempts[1]


def test_last_transport_error_reported(tmp_path, retrieve):
    servers = _servers(tmp_path)
    transport = FakeTransport({
        _url(servers[0]): TransportError("first", url=_url(servers[0])),
        _url(servers[1]): TransportError("second", url=_url(servers[1]), status_code=500),
    })

    with pytest.raises(TransportError) as exc_info:
        retrieve(PDB, NAME, servers, transport)

    assert str(exc_info.value) == "second"
    assert exc_info.value.status_code == 500
    assert len(exc_info.value.attempts) == 2


def test_write_failure_is_reported(tmp_path, retrieve):
    servers = _servers(tmp_path)
    transport = FakeTransport({_url(servers[0]): b"data", _url(servers[1]): b"data"})

    with patch("symsrv.orchestrator.write_atomic", side_effect=StorageError("disk full")):
        with pytest.raises(StorageError):
            retrieve(PDB, NAME, servers, transport)

    # No fallback after the data was in hand
    assert transport.calls == [_url(servers[0])]


def test_unreadable_cache_falls_through(tmp_path, retrieve):
    servers = _servers(tmp_path)
    transport = FakeTransport({_url(servers[1]): b"data"})
    def resolve(cache_path, filename, hash_str):
        if Path(cache_path) == servers[0].cache_path:
            raise StorageError("permission denied", path=cache_path)
        return resolve_cache_entry(cache_path, filename, hash_str)

    with patch("symsrv.orchestrator.resolve_cache_entry", side_effect=resolve):
        result = retrieve(PDB, NAME, servers, transport)

    assert result.server == servers[1]
    assert transport.calls == [_url(servers[1])]


def test_invalid_filename_fails_before_io(tmp_path, retrieve):
    transport = FakeTransport()
    with pytest.raises(ValueError):
        retrieve(PDB, "../evil.pdb", _servers(tmp_path), transport)
    assert transport.calls == []


def test_raw_hash_cannot_escape_cache(tmp_path, retrieve):
    servers = _servers(tmp_path, count=1)
    transport = FakeTransport({_url(servers[0], "a.pdb", "../../../escaped"): b"data"})
    with pytest.raises(ValueError):
        retrieve(RawHash("../../../escaped"), "a.pdb", servers, transport)
    assert transport.calls == []
    assert list(tmp_path.iterdir()) == []


def test_cancel_before_first_server(tmp_path, retrieve):
    servers = _servers(tmp_path)
    transport = FakeTransport({_url(servers[0]): b"data"})
    event = threading.Event()
    event.set()

    with pytest.raises(RetrievalCancelled):
        retrieve(PDB, NAME, servers, transport, cancel_event=event)
    assert transport.calls == []


def test_cancel_stops_before_next_server(tmp_path):
    servers = _servers(tmp_path)
    event = threading.Event()

    class CancellingTransport(FakeTransport):
        def fetch(self, url):
            event.set()
            return FakeTransport.fetch(self, url)

    transport = CancellingTransport({_url(servers[1]): b"data"})

    with pytest.raises(RetrievalCancelled):
        download_symbol(PDB, NAME, servers, transport, cancel_event=event)
    assert transport.calls == [_url(servers[0])]
    assert not servers[1].cache_path.exists()


def test_async_task_cancellation_leaves_no_partial_file(tmp_path):
    servers = _servers(tmp_path, count=1)

    class SlowTransport:
        async def fetch(self, url):
            self.started.set()
            await asyncio.sleep(10)
            return b"never"

    async def run():
        transport = SlowTransport()
        transport.started = asyncio.Event()
        task = asyncio.ensure_future(adownload_symbol(PDB, NAME, servers, transport))
        await transport.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(run())
    assert not (servers[0].cache_path / NAME).exists()


def test_log_messages(tmp_path):
    servers = _servers(tmp_path)
    transport = FakeTransport({_url(servers[1]): b"data"})
    messages = []

    download_symbol(PDB, NAME, servers, transport, log=messages.append)

    assert any("not found" in m for m in messages)
    assert any(m.startswith("+ Downloaded") for m in messages)


def test_plan_yields_requests_in_order(tmp_path):
    servers = _servers(tmp_path, count=1)
    plan = plan_retrieval(PDB, NAME, servers)

    request = next(plan)
    assert isinstance(request, ResolveCache)
    assert request.server == servers[0]
    assert request.hash == PDB_HASH

    class Miss:
        exists = False
        path = tmp_path / "target"

    request = plan.send(Miss())
    assert isinstance(request, Fetch)
    assert request.url == _url(servers[0])

    request = plan.send(b"data")
    assert isinstance(request, Store)
    assert request.path == tmp_path / "target"
    assert request.data == b"data"

    with pytest.raises(StopIteration) as stop:
        plan.send(request.path)
    assert stop.value.value.status is DownloadStatus.DOWNLOADED_OK


def test_plan_requires_servers():
    with pytest.raises(ValueError):
        next(plan_retrieval(PDB, NAME, []))
