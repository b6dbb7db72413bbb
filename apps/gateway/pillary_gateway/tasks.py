"""
Detached background tasks whose results are only logged
"""
import asyncio
from typing import Awaitable, Optional, Set

from .logging_config import setup_logging

logger = setup_logging(__name__)


class TaskSpawner:
    """Holds strong references to fire-and-forget tasks until they finish"""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()
        self.completed = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Awaitable, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._done)
        return task

    def _done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.failed += 1
            logger.warning(f"Background task {task.get_name()} failed: {exc!r}")
        else:
            self.completed += 1

    async def drain(self, timeout: Optional[float] = None):
        """Wait for the currently pending tasks"""
        if self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)

    async def shutdown(self):
        """Cancel whatever is still running"""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Background tasks stopped ({len(tasks)} cancelled)")
