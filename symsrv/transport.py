"""HTTP transports for symbol server downloads.

A transport performs one GET and classifies the answer:

- 2xx: the body is returned,
- 404: ``NotFoundError`` (expected, the caller moves to the next server),
- anything else, including timeouts and connection errors: ``TransportError``.

Two implementations share this contract: ``RequestsTransport`` blocks the
calling thread, ``HttpxAsyncTransport`` is awaited from asyncio code.
"""
from __future__ import annotations

from typing import Dict, Optional, Protocol, runtime_checkable

import httpx
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import NotFoundError, TransportError

DEFAULT_TIMEOUT = 30.0
DEFAULT_USER_AGENT = "Microsoft-Symbol-Server/10.0.0.0"
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_FACTOR = 0.5
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)
CHUNK_SIZE = 8192


@runtime_checkable
class Transport(Protocol):
    """Blocking fetch-and-classify capability."""

    def fetch(self, url: str) -> bytes:
        ...


@runtime_checkable
class AsyncTransport(Protocol):
    """Asyncio fetch-and-classify capability."""

    async def fetch(self, url: str) -> bytes:
        ...


def _classify_status(url: str, status_code: int):
    if status_code == 404:
        raise NotFoundError(url=url)
    if not 200 <= status_code < 300:
        raise TransportError(f"server returned HTTP {status_code}", url=url, status_code=status_code)


def build_session(user_agent: str = DEFAULT_USER_AGENT,
                  max_retries: int = DEFAULT_MAX_RETRIES,
                  backoff_factor: float = DEFAULT_BACKOFF_FACTOR) -> requests.Session:
    """Create an HTTP session with retry configuration."""
    session = requests.Session()
    retry_strategy = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=list(RETRY_STATUS_CODES),
        allowed_methods=["GET"],
        # Let the final status through so it can be classified
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({"User-Agent": user_agent})
    return session


class RequestsTransport:
    """Blocking transport built on a ``requests`` session."""

    def __init__(self, session: Optional[requests.Session] = None,
                 timeout: float = DEFAULT_TIMEOUT, **session_options):
        self._session = session if session is not None else build_session(**session_options)
        self.timeout = timeout

    def fetch(self, url: str) -> bytes:
        try:
            response = self._session.get(url, stream=True, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"error requesting file: {e}", url=url) from e

        try:
            _classify_status(url, response.status_code)
            chunks = []
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if chunk:
                    chunks.append(chunk)
            return b"".join(chunks)
        except requests.RequestException as e:
            raise TransportError(f"error reading response: {e}", url=url) from e
        finally:
            response.close()

    def close(self):
        self._session.close()

    def __enter__(self) -> "RequestsTransport":
        return self

    def __exit__(self, *exc_info):
        self.close()


def build_async_client(user_agent: str = DEFAULT_USER_AGENT,
                       timeout: float = DEFAULT_TIMEOUT,
                       max_retries: int = DEFAULT_MAX_RETRIES,
                       extra_headers: Optional[Dict[str, str]] = None) -> httpx.AsyncClient:
    """Create an ``httpx.AsyncClient`` with symbol server defaults.

    Retries only cover connection failures; HTTP status retries are not
    available in httpx's transport.
    """
    headers = {"User-Agent": user_agent}
    if extra_headers:
        headers.update(extra_headers)
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        follow_redirects=True,
        headers=headers,
        transport=httpx.AsyncHTTPTransport(retries=max_retries),
    )


class HttpxAsyncTransport:
    """Asyncio transport built on an ``httpx.AsyncClient``."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, **client_options):
        self._client = client if client is not None else build_async_client(**client_options)

    async def fetch(self, url: str) -> bytes:
        try:
            async with self._client.stream("GET", url) as response:
                _classify_status(url, response.status_code)
                return await response.aread()
        except httpx.HTTPError as e:
            raise TransportError(f"error requesting file: {e}", url=url) from e

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self) -> "HttpxAsyncTransport":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()
