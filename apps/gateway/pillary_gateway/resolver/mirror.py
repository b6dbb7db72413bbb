"""
Gateway fallback resolution for metadata documents and binary media
"""
import json
import re
from typing import Any, Dict, List, Mapping, NamedTuple, Optional

from ..config import settings
from ..exceptions import NotReachable
from ..logging_config import setup_logging
from .candidates import expand
from .edge_cache import EdgeCache, META, MEDIA
from .http import UpstreamClient, UpstreamResponse
from .policy import BackoffPolicy

logger = setup_logging(__name__)

FORWARDED_HEADERS = ("range", "if-none-match", "if-modified-since")

VIDEO_EXT = re.compile(r"\.(mp4|mov|webm)(\?|$)", re.IGNORECASE)
IMAGE_EXT = re.compile(r"\.(png|jpg|jpeg|gif|webp)(\?|$)", re.IGNORECASE)


class AttemptOutcome(NamedTuple):
    url: str
    response: Optional[UpstreamResponse]
    error: Optional[str]
    cached: bool = False

    @property
    def ok(self) -> bool:
        return self.response is not None


def forwarded_headers(client_headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """Range and conditional headers to pass on to the gateway"""
    if not client_headers:
        return {}
    lowered = {k.lower(): v for k, v in client_headers.items()}
    return {h: lowered[h] for h in FORWARDED_HEADERS if lowered.get(h)}


def default_content_type(url: str) -> Optional[str]:
    if VIDEO_EXT.search(url):
        return "video/mp4"
    if IMAGE_EXT.search(url):
        return "image/*"
    return None


class MirrorResolver:
    """
    Resolves content through an ordered list of IPFS gateways

    Candidates are attempted strictly in order. A 2xx/206/304 response ends
    the search; anything else, including timeouts and transport errors,
    advances to the next candidate after a backoff pause. Exhaustion is
    reported once: ``resolve_json`` raises NotReachable and
    ``resolve_binary`` returns a synthetic 502 response.
    """

    def __init__(
        self,
        client: UpstreamClient,
        gateways: Optional[List[str]] = None,
        json_base_cid: Optional[str] = None,
        edge_cache: Optional[EdgeCache] = None,
        backoff: Optional[BackoffPolicy] = None,
    ):
        self.client = client
        self.gateways = gateways or settings.gateways
        self.json_base_cid = settings.JSON_BASE_CID if json_base_cid is None else json_base_cid
        self.edge_cache = edge_cache
        self.backoff = backoff or BackoffPolicy()
        self.upstream_attempts = 0
        self.exhaustions = 0

    def json_urls(self, path: str) -> List[str]:
        path = path.lstrip("/")
        return [f"{gw}/ipfs/{self.json_base_cid}/{path}" for gw in self.gateways]

    def _cache_key(self, url: str, headers: Mapping[str, str]) -> Optional[str]:
        if self.edge_cache is None:
            return None
        return self.edge_cache.cache_key(url, headers)

    async def attempt(self, url: str, headers: Dict[str, str], content_class: str, stream: bool) -> AttemptOutcome:
        """Try one concrete URL; never raises"""
        key = self._cache_key(url, headers)
        if key is not None:
            cached = self.edge_cache.get(key)
            if cached is not None:
                if cached.status != 200:
                    return AttemptOutcome(url, None, f"HTTP {cached.status} (cached)", cached=True)
                resp = UpstreamResponse(cached.status, cached.headers, cached.body, url=url)
                resp.from_cache = True
                return AttemptOutcome(url, resp, None, cached=True)

        self.upstream_attempts += 1
        try:
            resp = await self.client.open(url, headers, stream=stream)
        except Exception as e:
            logger.debug(f"Gateway attempt failed: {e!r}", extra={"url": url})
            return AttemptOutcome(url, None, f"{type(e).__name__}: {e}")

        if not resp.ok:
            resp.release()
            if key is not None:
                self.edge_cache.put(key, resp.status, resp.headers, b"", content_class)
            logger.debug(f"Gateway answered {resp.status}", extra={"url": url, "status": resp.status})
            return AttemptOutcome(url, None, f"HTTP {resp.status}")

        # Metadata bodies are stored by resolve_json once they parse
        if key is not None and resp.status == 200 and content_class != META:
            length = resp.content_length
            if resp.body is not None or (length is not None and length <= self.edge_cache.max_body_bytes):
                try:
                    body = await resp.read()
                except Exception as e:
                    logger.debug(f"Gateway body read failed: {e!r}", extra={"url": url})
                    return AttemptOutcome(url, None, f"{type(e).__name__}: {e}")
                self.edge_cache.put(key, resp.status, resp.headers, body, content_class)

        return AttemptOutcome(url, resp, None)

    async def resolve_json(self, path: str) -> Any:
        """Fetch and parse ``<JSON_BASE_CID>/<path>`` from the first gateway that serves valid JSON"""
        urls = self.json_urls(path)
        headers = {"accept": "application/json"}
        last_error = None

        for n, url in enumerate(urls, 1):
            outcome = await self.attempt(url, headers, META, stream=False)
            if outcome.ok:
                key = self._cache_key(url, headers)
                try:
                    body = await outcome.response.read()
                    doc = json.loads(body)
                except ValueError as e:
                    last_error = f"invalid JSON from {url}: {e}"
                    if key is not None:
                        self.edge_cache.put(key, 502, {}, b"", META)
                except Exception as e:
                    last_error = f"{type(e).__name__}: {e}"
                else:
                    if key is not None and not outcome.cached:
                        self.edge_cache.put(key, outcome.response.status, outcome.response.headers, body, META)
                    return doc
            else:
                last_error = outcome.error
            if n < len(urls) and not outcome.cached:
                await self.backoff.wait(n)

        self.exhaustions += 1
        logger.warning(f"JSON not reachable on any gateway: {path}", extra={"url": path, "attempt": len(urls)})
        raise NotReachable(path, len(urls), last_error)

    async def resolve_binary(
        self,
        uris: List[str],
        accept: Optional[str] = None,
        client_headers: Optional[Mapping[str, str]] = None,
        content_class: str = MEDIA,
    ) -> UpstreamResponse:
        """
        Fetch the first candidate that any gateway serves

        ``uris`` may mix ``ipfs://`` references and concrete URLs; references
        are expanded over every gateway in order. Range and conditional client
        headers are forwarded. On exhaustion a stale cached copy is served if
        one is still inside its stale window, otherwise a 502.
        """
        urls = expand(uris, self.gateways)
        headers = forwarded_headers(client_headers)
        if accept:
            headers["accept"] = accept

        stale = None
        for n, url in enumerate(urls, 1):
            outcome = await self.attempt(url, headers, content_class, stream=True)
            if outcome.ok:
                resp = outcome.response
                if "content-type" not in resp.headers:
                    guessed = default_content_type(url)
                    if guessed:
                        resp.headers["content-type"] = guessed
                return resp
            if stale is None and self.edge_cache is not None:
                stale = self.edge_cache.get_stale(self._cache_key(url, headers))
            if n < len(urls) and not outcome.cached:
                await self.backoff.wait(n)

        self.exhaustions += 1
        if stale is not None:
            logger.warning("All gateways failed, serving stale copy", extra={"attempt": len(urls)})
            resp = UpstreamResponse(stale.status, stale.headers, stale.body)
            resp.from_cache = True
            resp.stale = True
            return resp

        logger.warning("All gateways failed for media request", extra={"attempt": len(urls)})
        return UpstreamResponse.synthetic(502, "Upstream error")
