"""
Main entry point for the standalone prewarm scheduler
Keeps the apex rows of a running gateway warm on a fixed interval
"""
import asyncio
import signal
import sys
from typing import Optional

from .config import settings
from .logging_config import get_logger
from .prewarm import Prewarmer, PrewarmScheduler

logger = get_logger(__name__)


class SchedulerMain:
    """Main scheduler application"""

    def __init__(self, interval: Optional[float] = None):
        self.interval = interval
        self.scheduler: Optional[PrewarmScheduler] = None
        self.shutdown_event = asyncio.Event()

    async def startup(self):
        """Start the prewarm loop"""
        logger.info(f"Starting prewarm scheduler for {settings.public_base_url}")
        self.scheduler = PrewarmScheduler(Prewarmer(), interval=self.interval)
        await self.scheduler.start()

    async def shutdown(self):
        """Stop the prewarm loop"""
        logger.info("Shutting down prewarm scheduler")
        if self.scheduler:
            await self.scheduler.stop()
            logger.info(f"Scheduler stopped after {self.scheduler.cycles} cycles")

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown"""
        def signal_handler(sig, frame):
            logger.info(f"Received signal {sig}, initiating shutdown...")
            self.shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def run(self):
        """Run until a shutdown signal arrives"""
        try:
            await self.startup()
            await self.shutdown_event.wait()
        except Exception as e:
            logger.error(f"Scheduler application error: {e}", exc_info=True)
            sys.exit(1)
        finally:
            await self.shutdown()


async def main():
    """Main entry point"""
    scheduler = SchedulerMain()
    scheduler.setup_signal_handlers()
    await scheduler.run()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
