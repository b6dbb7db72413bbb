"""
aiohttp transport used to reach the IPFS gateways
"""
from typing import AsyncIterator, Dict, Optional

import aiohttp

from ..config import settings
from ..logging_config import setup_logging

logger = setup_logging(__name__)

CHUNK_SIZE = 64 * 1024


class UpstreamResponse:
    """
    Status, headers and body of one upstream attempt

    The body is either fully buffered (``body``) or still attached to an open
    aiohttp response and consumed through ``iter_chunks``.
    """

    def __init__(
        self,
        status: int,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[bytes] = None,
        url: Optional[str] = None,
        raw: Optional[aiohttp.ClientResponse] = None,
    ):
        self.status = status
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.body = body
        self.url = url
        self._raw = raw
        self.from_cache = False
        self.stale = False

    @classmethod
    def synthetic(cls, status: int, text: str) -> "UpstreamResponse":
        return cls(status, {"content-type": "text/plain; charset=utf-8"}, text.encode("utf-8"))

    @property
    def ok(self) -> bool:
        return is_success(self.status)

    @property
    def content_length(self) -> Optional[int]:
        value = self.headers.get("content-length")
        if value is None:
            return len(self.body) if self.body is not None else None
        try:
            return int(value)
        except ValueError:
            return None

    async def read(self) -> bytes:
        """Read the whole body and release the connection"""
        if self.body is None:
            if self._raw is None:
                self.body = b""
            else:
                try:
                    self.body = await self._raw.read()
                finally:
                    self.release()
        return self.body

    async def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
        """Yield the body in chunks; the connection is released when done"""
        if self.body is not None:
            for offset in range(0, len(self.body), chunk_size):
                yield self.body[offset:offset + chunk_size]
            return
        if self._raw is None:
            return
        try:
            async for chunk in self._raw.content.iter_chunked(chunk_size):
                yield chunk
        finally:
            self.release()

    def release(self):
        if self._raw is not None:
            self._raw.release()
            self._raw = None


def is_success(status: int) -> bool:
    """2xx, 206 and 304 count as a successful attempt"""
    return 200 <= status < 300 or status == 304


class UpstreamClient:
    """Thin wrapper over an aiohttp session with gateway-friendly timeouts"""

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = None,
        read_timeout: float = None,
        user_agent: str = None,
    ):
        self.session = session
        self._owns_session = session is None
        self.timeout = timeout if timeout is not None else settings.UPSTREAM_TIMEOUT
        self.read_timeout = read_timeout if read_timeout is not None else settings.UPSTREAM_READ_TIMEOUT
        self.user_agent = user_agent or settings.USER_AGENT

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Create the HTTP session"""
        if self.session is None:
            self.session = aiohttp.ClientSession(
                headers={"User-Agent": self.user_agent},
                connector=aiohttp.TCPConnector(limit=100, ttl_dns_cache=300),
            )
            self._owns_session = True
            logger.info("Upstream HTTP session initialized")

    async def close(self):
        """Close the HTTP session if we created it"""
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.session = None
            logger.info("Upstream HTTP session closed")

    async def open(self, url: str, headers: Optional[Dict[str, str]] = None, stream: bool = False) -> UpstreamResponse:
        """
        Issue a GET and return the response

        With ``stream=False`` the body is buffered under a total timeout.
        With ``stream=True`` only connect and per-read timeouts apply and the
        caller owns the open response. Transport errors and timeouts raise.
        """
        if self.session is None:
            await self.start()

        if stream:
            timeout = aiohttp.ClientTimeout(total=None, sock_connect=self.timeout, sock_read=self.read_timeout)
        else:
            timeout = aiohttp.ClientTimeout(total=self.timeout)

        resp = await self.session.get(url, headers=headers or {}, timeout=timeout, allow_redirects=True)
        result = UpstreamResponse(resp.status, dict(resp.headers), url=url, raw=resp)
        if not stream:
            await result.read()
        return result
