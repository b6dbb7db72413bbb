"""
Retry pacing between gateway attempts
"""
import asyncio
from typing import Awaitable, Callable

from ..config import settings


class BackoffPolicy:
    """Capped, attempt-indexed linear backoff: ``min(cap, step * attempt)``"""

    def __init__(
        self,
        step_ms: int = None,
        cap_ms: int = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.step_ms = settings.BACKOFF_STEP_MS if step_ms is None else step_ms
        self.cap_ms = settings.BACKOFF_CAP_MS if cap_ms is None else cap_ms
        self._sleep = sleep

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the ``attempt``-th failure (1-based)"""
        return max(0, min(self.cap_ms, self.step_ms * attempt)) / 1000.0

    async def wait(self, attempt: int):
        delay = self.delay(attempt)
        if delay > 0:
            await self._sleep(delay)
