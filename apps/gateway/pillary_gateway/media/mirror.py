"""
Durable-mirror-first media serving with asynchronous backfill
"""
from dataclasses import dataclass, field
from functools import partial
from typing import AsyncIterator, Callable, Dict, List, Mapping, Optional

from ..config import settings
from ..exceptions import GatewayError
from ..logging_config import setup_logging
from ..resolver.candidates import image_candidates, normalize_tier, video_candidates
from ..resolver.http import UpstreamResponse
from ..tasks import TaskSpawner
from .ranges import content_range, parse_range

logger = setup_logging(__name__)

MEDIA_CACHE_CONTROL = "public, max-age=86400, stale-while-revalidate=86400"
PASSTHROUGH_HEADERS = (
    "content-type", "content-length", "content-range", "accept-ranges",
    "etag", "last-modified",
)


@dataclass
class MediaResponse:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    stream: Optional[AsyncIterator[bytes]] = None
    release: Optional[Callable[[], None]] = None
    on_discard: Optional[Callable[[], None]] = None

    @classmethod
    def text(cls, status: int, message: str) -> "MediaResponse":
        return cls(status, {"content-type": "text/plain; charset=utf-8", "cache-control": "no-store"}, message.encode())

    def discard(self):
        """Drop an unread body, returning its connection"""
        if self.release is not None:
            self.release()
            self.release = None
        if self.on_discard is not None:
            self.on_discard()
            self.on_discard = None


def not_found() -> MediaResponse:
    return MediaResponse.text(404, "Not found")


def upstream_error() -> MediaResponse:
    return MediaResponse.text(502, "Upstream error")


def video_key(tier: str, index: int) -> str:
    return f"video/{tier}/{index}.mp4"


def thumb_key(index: int) -> str:
    return f"thumb/{index}"


def _etag_matches(if_none_match: Optional[str], etag: Optional[str]) -> bool:
    if not if_none_match or not etag:
        return False
    wanted = {t.strip().removeprefix("W/") for t in if_none_match.split(",")}
    return "*" in wanted or etag.removeprefix("W/") in wanted


class MediaMirror:
    """
    Serves thumbnails and videos from the durable mirror, falling back to the gateways

    A mirror hit honors single byte ranges and If-None-Match. A miss streams
    the upstream response unchanged; full 200 bodies are tee-buffered and
    written to the mirror by a detached task once the stream completes.
    Upstream 206 responses pass through and schedule a separate full-body
    backfill, as does a 200 whose body is discarded unread. Upstream 304
    responses are passed through without a write.
    """

    def __init__(
        self,
        storage,
        resolver,
        items,
        spawner: TaskSpawner,
        gateways: Optional[List[str]] = None,
        video_cids: Optional[Dict[str, Optional[str]]] = None,
        max_object_bytes: int = None,
        backfill_on_partial: bool = None,
    ):
        self.storage = storage
        self.resolver = resolver
        self.items = items
        self.spawner = spawner
        self.gateways = gateways or settings.gateways
        self.video_cids = settings.video_cids if video_cids is None else video_cids
        self.max_object_bytes = settings.MIRROR_MAX_OBJECT_BYTES if max_object_bytes is None else max_object_bytes
        self.backfill_on_partial = settings.BACKFILL_ON_PARTIAL if backfill_on_partial is None else backfill_on_partial
        self._inflight = set()
        self.mirror_hits = 0
        self.mirror_misses = 0

    async def serve_video(self, index: int, q: Optional[str], headers: Mapping[str, str]) -> MediaResponse:
        if not self.items.is_valid(index):
            return not_found()
        tier = normalize_tier(q)
        key = video_key(tier, index)
        client = {k.lower(): v for k, v in headers.items()}

        hit = await self._from_mirror(key, client, "video/mp4")
        if hit is not None:
            return hit

        try:
            meta = await self.items.fetch_document(index)
        except GatewayError as e:
            logger.warning(f"Video metadata unavailable: {e}", extra={"index": index, "tier": tier})
            return upstream_error()

        candidates = video_candidates(meta, index, tier, self.gateways, self.video_cids)
        if not candidates:
            return not_found()
        upstream = await self.resolver.resolve_binary(candidates, "video/*", client)
        return self._relay(upstream, key, candidates, "video/*", "video/mp4")

    async def serve_thumb(self, index: int, headers: Mapping[str, str]) -> MediaResponse:
        if not self.items.is_valid(index):
            return not_found()
        key = thumb_key(index)
        client = {k.lower(): v for k, v in headers.items()}

        hit = await self._from_mirror(key, client, "image/*")
        if hit is not None:
            return hit

        try:
            meta = await self.items.fetch_document(index)
        except GatewayError as e:
            logger.warning(f"Thumbnail metadata unavailable: {e}", extra={"index": index})
            return upstream_error()

        candidates = image_candidates(meta, self.gateways)
        if not candidates:
            return not_found()
        upstream = await self.resolver.resolve_binary(candidates, "image/*", client)
        return self._relay(upstream, key, candidates, "image/*", "image/*")

    async def _from_mirror(self, key: str, client: Dict[str, str], default_type: str) -> Optional[MediaResponse]:
        """Response served from the durable mirror, or None on a miss"""
        if self.storage is None:
            return None
        try:
            info = await self.storage.head_object(key)
        except Exception as e:
            logger.warning(f"Mirror lookup failed, treating as miss: {e}", extra={"key": key})
            return None
        if info is None:
            self.mirror_misses += 1
            return None
        self.mirror_hits += 1

        headers = {
            "content-type": info.content_type or default_type,
            "accept-ranges": "bytes",
            "cache-control": MEDIA_CACHE_CONTROL,
            "vary": "Accept, Range",
        }
        if info.etag:
            headers["etag"] = info.etag
            if _etag_matches(client.get("if-none-match"), info.etag):
                return MediaResponse(304, headers)

        byte_range = parse_range(client.get("range"), info.size)
        try:
            obj = await self.storage.get_object(key, byte_range)
        except Exception as e:
            logger.warning(f"Mirror read failed, treating as miss: {e}", extra={"key": key})
            return None
        if obj is None:
            return None

        if byte_range is not None:
            start, end = byte_range
            headers["content-range"] = content_range(start, end, info.size)
            headers["content-length"] = str(end - start + 1)
            return MediaResponse(206, headers, stream=obj.iter_chunks(), release=obj.close)

        headers["content-length"] = str(info.size)
        return MediaResponse(200, headers, stream=obj.iter_chunks(), release=obj.close)

    def _relay(
        self,
        upstream: UpstreamResponse,
        key: str,
        candidates: List[str],
        accept: str,
        default_type: str,
    ) -> MediaResponse:
        """Pass an upstream response through, arranging mirror backfill"""
        if not upstream.ok:
            upstream.release()
            return upstream_error()

        headers = {h: upstream.headers[h] for h in PASSTHROUGH_HEADERS if h in upstream.headers}
        headers.setdefault("content-type", default_type)
        headers["cache-control"] = MEDIA_CACHE_CONTROL
        headers["vary"] = "Accept, Range"

        on_discard = None
        if upstream.status == 200 and self.storage is not None and not upstream.stale:
            stream = self._tee(upstream, key, headers["content-type"])
            # An unread body (HEAD) never reaches the tee
            on_discard = partial(self._schedule_backfill, key, candidates, accept)
        else:
            if upstream.status == 206 and self.storage is not None and self.backfill_on_partial:
                self._schedule_backfill(key, candidates, accept)
            stream = upstream.iter_chunks()
        return MediaResponse(upstream.status, headers, stream=stream, release=upstream.release, on_discard=on_discard)

    async def _tee(self, upstream: UpstreamResponse, key: str, content_type: str) -> AsyncIterator[bytes]:
        """Yield the upstream body while buffering it for the mirror"""
        expected = upstream.content_length
        buffering = expected is None or expected <= self.max_object_bytes
        buf = bytearray()
        complete = False
        try:
            async for chunk in upstream.iter_chunks():
                if buffering:
                    buf.extend(chunk)
                    if len(buf) > self.max_object_bytes:
                        buffering = False
                        buf = bytearray()
                yield chunk
            complete = True
        finally:
            if complete and buffering and buf and (expected is None or expected == len(buf)):
                self.spawner.spawn(self._write(key, bytes(buf), content_type), name=f"mirror:{key}")

    async def _write(self, key: str, data: bytes, content_type: str):
        try:
            await self.storage.put_object(data, key, content_type)
        except Exception as e:
            logger.warning(f"Mirror write failed: {e}", extra={"key": key})

    def _schedule_backfill(self, key: str, candidates: List[str], accept: str):
        if key in self._inflight:
            return
        self._inflight.add(key)
        task = self.spawner.spawn(self._backfill(key, candidates, accept), name=f"backfill:{key}")
        task.add_done_callback(lambda _: self._inflight.discard(key))

    async def _backfill(self, key: str, candidates: List[str], accept: str):
        """Fetch the full object after a partial or unread response and mirror it"""
        try:
            if await self.storage.object_exists(key):
                return
            upstream = await self.resolver.resolve_binary(candidates, accept)
            if upstream.status != 200:
                upstream.release()
                return
            length = upstream.content_length
            if length is not None and length > self.max_object_bytes:
                upstream.release()
                logger.info("Object too large to mirror", extra={"key": key})
                return
            data = await upstream.read()
            if len(data) > self.max_object_bytes:
                return
            content_type = upstream.headers.get("content-type") or "application/octet-stream"
            await self.storage.put_object(data, key, content_type)
        except Exception as e:
            logger.warning(f"Mirror backfill failed: {e}", extra={"key": key})

    def stats(self) -> Dict[str, int]:
        return {
            "mirrorHits": self.mirror_hits,
            "mirrorMisses": self.mirror_misses,
            "backfillsInFlight": len(self._inflight),
        }
