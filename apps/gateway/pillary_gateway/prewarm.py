"""
Cache prewarming for the apex rows of the pyramid

Prewarm issues the same public requests a client would: metadata, a
thumbnail existence check and a one-byte video range. Any single request
may fail without affecting the others.
"""
import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import aiohttp

from .config import settings
from .layout import iter_rows
from .logging_config import setup_logging, PerformanceLogger

logger = setup_logging(__name__)


@dataclass(frozen=True)
class PrewarmTarget:
    method: str
    path: str
    headers: Tuple[Tuple[str, str], ...] = ()


def prewarm_targets(rows: int, total: int) -> List[PrewarmTarget]:
    """Requests for the first ``rows`` rows, apex first, smallest index first"""
    targets = []
    for _, first, last in iter_rows(rows, total):
        for index in range(first, last + 1):
            targets.append(PrewarmTarget("GET", f"/meta/{index}"))
            targets.append(PrewarmTarget("HEAD", f"/thumb/{index}"))
            targets.append(PrewarmTarget("GET", f"/video/{index}?q=med", (("Range", "bytes=0-0"),)))
    return targets


class Prewarmer:
    """Runs one prewarm cycle against the public API"""

    def __init__(
        self,
        sidemaps=None,
        base_url: str = None,
        rows: int = None,
        concurrency: int = None,
        total_items: int = None,
        session: Optional[aiohttp.ClientSession] = None,
        api_key: Optional[str] = None,
        timeout: float = None,
    ):
        self.sidemaps = sidemaps
        self.base_url = (base_url or settings.public_base_url).rstrip("/")
        self.rows = settings.PREWARM_ROWS if rows is None else rows
        self.concurrency = max(1, settings.PREWARM_CONCURRENCY if concurrency is None else concurrency)
        self.total_items = settings.TOTAL_ITEMS if total_items is None else total_items
        self.session = session
        self.api_key = api_key if api_key is not None else settings.API_KEY
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.UPSTREAM_TIMEOUT * 4)

    async def reload_side_maps(self, session) -> Dict[str, int]:
        """Reload both side maps in-process, or through the admin endpoints when running standalone"""
        if self.sidemaps is not None:
            return await self.sidemaps.reload()

        counts = {}
        headers = {"X-API-Key": self.api_key} if self.api_key else {}
        for name, path in (("mint", "/mints/reload"), ("sales", "/sales/reload")):
            try:
                async with session.request("POST", self.base_url + path, headers=headers, timeout=self.timeout) as resp:
                    payload = await resp.json()
                    counts[name] = payload.get("count", 0)
            except Exception as e:
                logger.warning(f"Side map reload via API failed: {e}", extra={"kind": name})
        return counts

    async def _request(self, session, target: PrewarmTarget, semaphore: asyncio.Semaphore) -> bool:
        async with semaphore:
            try:
                async with session.request(
                    target.method,
                    self.base_url + target.path,
                    headers=dict(target.headers),
                    timeout=self.timeout,
                ) as resp:
                    await resp.read()
                    return resp.status < 400
            except Exception as e:
                logger.debug(f"Prewarm request failed: {e!r}", extra={"url": target.path})
                return False

    async def run_once(self) -> Dict[str, int]:
        """Reload side maps, then fire every target; returns ok/failed counts"""
        targets = prewarm_targets(self.rows, self.total_items)
        session = self.session or aiohttp.ClientSession()
        try:
            with PerformanceLogger(logger, "prewarm cycle", kind="prewarm"):
                maps = await self.reload_side_maps(session)
                semaphore = asyncio.Semaphore(self.concurrency)
                results = await asyncio.gather(
                    *(self._request(session, t, semaphore) for t in targets),
                    return_exceptions=True,
                )
        finally:
            if self.session is None:
                await session.close()

        ok = sum(1 for r in results if r is True)
        summary = {"targets": len(targets), "ok": ok, "failed": len(targets) - ok}
        logger.info(f"Prewarm finished: {summary} maps={maps}")
        return summary


class PrewarmScheduler:
    """Runs a Prewarmer on a fixed interval until stopped"""

    def __init__(self, prewarmer: Prewarmer, interval: float = None, initial_delay: float = 0.0):
        self.prewarmer = prewarmer
        self.interval = settings.PREWARM_INTERVAL if interval is None else interval
        self.initial_delay = initial_delay
        self.cycles = 0
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        self._stop.clear()
        self._task = asyncio.create_task(self._loop(), name="prewarm-scheduler")
        logger.info(f"Prewarm scheduler started (every {self.interval}s)")

    async def _sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds``; True when stop was requested"""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _loop(self):
        if self.initial_delay and await self._sleep(self.initial_delay):
            return
        while not self._stop.is_set():
            try:
                await self.prewarmer.run_once()
            except Exception as e:
                logger.error(f"Prewarm cycle failed: {e}", exc_info=True)
            self.cycles += 1
            if await self._sleep(self.interval):
                return

    async def stop(self):
        self._stop.set()
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
            logger.info("Prewarm scheduler stopped")
