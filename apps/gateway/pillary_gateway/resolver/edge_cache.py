"""
In-process response cache in front of the gateways

Entries are keyed by URL plus Accept. Requests carrying a Range or a
conditional header are never cached or served from cache.
"""
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional, Tuple

from ..config import settings

BYPASS_HEADERS = ("range", "if-none-match", "if-modified-since")

META = "meta"
MEDIA = "media"


@dataclass
class CachedResponse:
    status: int
    headers: Dict[str, str]
    body: bytes
    expires_at: float
    stale_until: float
    stored_at: float = field(default=0.0)


class EdgeCache:
    """TTL cache of upstream responses, LRU-bounded by entry count and total body bytes"""

    def __init__(
        self,
        max_entries: int = None,
        max_body_bytes: int = None,
        max_total_bytes: int = None,
        meta_ttl: int = None,
        media_ttl: int = None,
        media_stale_ttl: int = None,
        not_found_ttl: int = None,
        server_error_ttl: int = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        cfg = settings.get_edge_cache_config()
        self.max_entries = cfg["max_entries"] if max_entries is None else max_entries
        self.max_body_bytes = cfg["max_body_bytes"] if max_body_bytes is None else max_body_bytes
        self.max_total_bytes = cfg["max_total_bytes"] if max_total_bytes is None else max_total_bytes
        self.meta_ttl = cfg["meta_ttl"] if meta_ttl is None else meta_ttl
        self.media_ttl = cfg["media_ttl"] if media_ttl is None else media_ttl
        self.media_stale_ttl = cfg["media_stale_ttl"] if media_stale_ttl is None else media_stale_ttl
        self.not_found_ttl = cfg["not_found_ttl"] if not_found_ttl is None else not_found_ttl
        self.server_error_ttl = cfg["server_error_ttl"] if server_error_ttl is None else server_error_ttl
        self.clock = clock
        self._entries: "OrderedDict[str, CachedResponse]" = OrderedDict()
        self.total_bytes = 0
        self.hits = 0
        self.misses = 0
        self.stores = 0

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def cache_key(url: str, headers: Optional[Mapping[str, str]] = None) -> Optional[str]:
        """Cache key for a request, or None when the request must bypass the cache"""
        lowered = {k.lower(): v for k, v in (headers or {}).items()}
        if any(lowered.get(h) for h in BYPASS_HEADERS):
            return None
        return f"{url}|{lowered.get('accept', '')}"

    def ttl_for(self, status: int, content_class: str) -> Tuple[int, int]:
        """``(ttl, stale_window)`` in seconds for a response; ``(0, 0)`` means do not cache"""
        if status == 200:
            if content_class == MEDIA:
                return self.media_ttl, self.media_stale_ttl
            return self.meta_ttl, 0
        if status == 404:
            return self.not_found_ttl, 0
        if 500 <= status < 600:
            return self.server_error_ttl, 0
        return 0, 0

    def get(self, key: Optional[str]) -> Optional[CachedResponse]:
        """Fresh entry for ``key`` or None"""
        if key is None:
            return None
        entry = self._entries.get(key)
        now = self.clock()
        if entry is None or now >= entry.expires_at:
            if entry is not None and now >= entry.stale_until:
                self._evict(key)
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return entry

    def get_stale(self, key: Optional[str]) -> Optional[CachedResponse]:
        """Expired but still inside its stale-serve window"""
        if key is None:
            return None
        entry = self._entries.get(key)
        if entry is None or entry.status != 200:
            return None
        if self.clock() < entry.stale_until:
            return entry
        return None

    def put(self, key: Optional[str], status: int, headers: Mapping[str, str], body: bytes, content_class: str) -> bool:
        """Store a response; returns False when it is not cacheable"""
        if key is None or len(body) > min(self.max_body_bytes, self.max_total_bytes):
            return False
        ttl, stale = self.ttl_for(status, content_class)
        if ttl <= 0:
            return False
        now = self.clock()
        existing = self._entries.get(key)
        # A failure never displaces a 200 that can still be served stale
        if status != 200 and existing is not None and existing.status == 200 and now < existing.stale_until:
            return False
        if existing is not None:
            self._evict(key)
        self._entries[key] = CachedResponse(
            status=status,
            headers=dict(headers),
            body=body,
            expires_at=now + ttl,
            stale_until=now + ttl + stale,
            stored_at=now,
        )
        self._entries.move_to_end(key)
        self.total_bytes += len(body)
        self.stores += 1
        while len(self._entries) > self.max_entries or self.total_bytes > self.max_total_bytes:
            self._evict(next(iter(self._entries)))
        return True

    def _evict(self, key: str):
        entry = self._entries.pop(key, None)
        if entry is not None:
            self.total_bytes -= len(entry.body)

    def clear(self):
        self._entries.clear()
        self.total_bytes = 0

    def stats(self) -> Dict[str, int]:
        return {
            "entries": len(self._entries),
            "bytes": self.total_bytes,
            "hits": self.hits,
            "misses": self.misses,
            "stores": self.stores,
        }
