"""
TTL-memoized side maps read from the durable store

The mint map (index -> mint address) and the sales map (mint -> last sale
unix ms, or 1 for "always") are produced by external jobs. They are loaded
whole, kept for a TTL and treated as advisory: any read or parse failure
yields an empty map.
"""
import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

from .config import settings
from .logging_config import setup_logging, PerformanceLogger

logger = setup_logging(__name__)

T = TypeVar("T")

MINT = "mint"
SALES = "sales"
ALL = "all"

ALWAYS_SOLD = 1
DAY_MS = 24 * 60 * 60 * 1000


class TTLCell(Generic[T]):
    """A value with a load time and a TTL; reloads on expiry or invalidation"""

    def __init__(
        self,
        loader: Callable[[], Awaitable[T]],
        ttl: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.loader = loader
        self.ttl = ttl
        self.clock = clock
        self.value: Optional[T] = None
        self.loaded_at: Optional[float] = None
        self.loads = 0
        self._lock = asyncio.Lock()

    def is_fresh(self) -> bool:
        return self.loaded_at is not None and (self.clock() - self.loaded_at) < self.ttl

    async def get(self) -> T:
        if self.is_fresh():
            return self.value
        async with self._lock:
            # another reader may have reloaded while we waited
            if self.is_fresh():
                return self.value
            self.value = await self.loader()
            self.loaded_at = self.clock()
            self.loads += 1
            return self.value

    def invalidate(self):
        self.loaded_at = None


def is_sold_24h(mint: Optional[str], sales_map: Dict[str, Any], now_ms: Optional[int] = None) -> bool:
    """True when ``mint`` carries the always-sold sentinel or sold within the last 24h"""
    if not mint:
        return False
    value = sales_map.get(mint)
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if value == ALWAYS_SOLD:
            return True
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        return value >= now_ms - DAY_MS
    return False


class SideMapCache:
    """Mint map and sales map, each in its own TTL cell"""

    def __init__(
        self,
        storage=None,
        mint_ttl: float = None,
        sales_ttl: float = None,
        mint_keys=None,
        sales_keys=None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.mint_keys = mint_keys or settings.mint_map_keys
        self.sales_keys = sales_keys or settings.sales_map_keys
        self.wall_clock = wall_clock
        self.cells: Dict[str, TTLCell] = {
            MINT: TTLCell(
                lambda: self._load(MINT, self.mint_keys),
                settings.MINT_MAP_TTL_SECONDS if mint_ttl is None else mint_ttl,
                clock,
            ),
            SALES: TTLCell(
                lambda: self._load(SALES, self.sales_keys),
                settings.SALES_MAP_TTL_SECONDS if sales_ttl is None else sales_ttl,
                clock,
            ),
        }

    async def _load(self, name: str, keys) -> Dict[str, Any]:
        if self.storage is None:
            return {}
        with PerformanceLogger(logger, f"load {name} map", kind=name):
            try:
                text = await self.storage.get_text(keys)
            except Exception as e:
                logger.warning(f"{name} map unavailable: {e}", extra={"kind": name})
                return {}
        if not text:
            logger.info(f"{name} map not found in storage", extra={"kind": name})
            return {}
        try:
            data = json.loads(text)
        except ValueError as e:
            logger.warning(f"{name} map is not valid JSON: {e}", extra={"kind": name})
            return {}
        if not isinstance(data, dict):
            logger.warning(f"{name} map is not a JSON object", extra={"kind": name})
            return {}
        return data

    def _which(self, which: str):
        if which == ALL:
            return list(self.cells.values())
        if which not in self.cells:
            raise ValueError(f"unknown side map: {which}")
        return [self.cells[which]]

    async def get_mint_map(self) -> Dict[str, str]:
        return await self.cells[MINT].get()

    async def get_sales_map(self) -> Dict[str, Any]:
        return await self.cells[SALES].get()

    def invalidate(self, which: str = ALL):
        """Drop cached data so the next read reloads"""
        for cell in self._which(which):
            cell.invalidate()

    async def reload(self, which: str = ALL) -> Dict[str, int]:
        """Invalidate and eagerly reload; returns entry counts per map"""
        self.invalidate(which)
        counts = {}
        for name in ([MINT, SALES] if which == ALL else [which]):
            counts[name] = len(await self.cells[name].get())
        return counts

    async def mint_for(self, index: int) -> Optional[str]:
        mint = (await self.get_mint_map()).get(str(index))
        return str(mint) if mint else None

    def now_ms(self) -> int:
        return int(self.wall_clock() * 1000)

    def sold_24h(self, mint: Optional[str], sales_map: Dict[str, Any]) -> bool:
        return is_sold_24h(mint, sales_map, self.now_ms())

    async def counts(self) -> Dict[str, int]:
        return {
            "mintMapCount": len(await self.get_mint_map()),
            "sales24hCount": len(await self.get_sales_map()),
        }
