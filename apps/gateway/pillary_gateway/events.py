"""
Server-sent heartbeat stream
"""
import asyncio
import json
import time
from typing import AsyncIterator, Callable, Optional

from .config import settings
from .logging_config import setup_logging

logger = setup_logging(__name__)


class KeepaliveTimer:
    """
    Interval timer scoped to one stream

    The ticking task starts in ``__aenter__`` and is cancelled in
    ``__aexit__``, which also runs when the consuming generator is closed or
    cancelled after a client disconnect.
    """

    active = 0

    def __init__(self, interval: float, clock: Callable[[], float] = time.time):
        self.interval = interval
        self.clock = clock
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None

    async def __aenter__(self):
        self._queue = asyncio.Queue()
        self._task = asyncio.create_task(self._run(), name="keepalive-timer")
        KeepaliveTimer.active += 1
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._task is not None:
            task, self._task = self._task, None
            task.cancel()
            KeepaliveTimer.active -= 1
            await asyncio.gather(task, return_exceptions=True)

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            self._queue.put_nowait(int(self.clock() * 1000))

    async def ticks(self) -> AsyncIterator[int]:
        while True:
            yield await self._queue.get()


def sse_event(data) -> str:
    return f"data: {json.dumps(data, separators=(',', ':'))}\n\n"


async def heartbeat_stream(
    interval: float = None,
    retry_ms: int = None,
    clock: Callable[[], float] = time.time,
) -> AsyncIterator[str]:
    """Reconnect hint, then a heartbeat payload every ``interval`` seconds"""
    interval = settings.EVENTS_KEEPALIVE_SECONDS if interval is None else interval
    retry_ms = settings.EVENTS_RETRY_MS if retry_ms is None else retry_ms

    yield f"retry: {retry_ms}\n\n"
    async with KeepaliveTimer(interval, clock) as timer:
        logger.debug("Event stream opened")
        try:
            async for t in timer.ticks():
                yield sse_event({"t": t, "type": "heartbeat"})
        finally:
            logger.debug("Event stream closed")


def active_channels() -> int:
    return KeepaliveTimer.active
