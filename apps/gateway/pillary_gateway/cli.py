"""
Command line entrypoint for the gateway.

Use cases:
- Serve the API: python -m pillary_gateway.cli serve --port 8000
- One prewarm cycle from cron or a GitHub Actions schedule:
  python -m pillary_gateway.cli prewarm --rows 12 --base-url https://example.org/pillary/api
- Inspect the pyramid layout: python -m pillary_gateway.cli rows --rows 4

Prewarm runs against a live deployment, so side maps are reloaded through
the admin endpoints (X-API-Key from API_KEY) rather than in-process.
"""
import argparse
import asyncio
import sys
from typing import Dict, Optional

import uvicorn

from .config import settings
from .layout import iter_rows
from .logging_config import setup_logging
from .prewarm import Prewarmer


logger = setup_logging(__name__)


async def run_prewarm(rows: Optional[int] = None, base_url: Optional[str] = None, concurrency: Optional[int] = None) -> Dict[str, int]:
    """Run one prewarm cycle against a running gateway; return ok/failed counters."""
    prewarmer = Prewarmer(base_url=base_url, rows=rows, concurrency=concurrency)
    logger.info(f"Prewarming {prewarmer.rows} rows at {prewarmer.base_url}")
    return await prewarmer.run_once()


def serve(host: Optional[str] = None, port: Optional[int] = None):
    uvicorn.run(
        "pillary_gateway.main:app",
        host=host or settings.API_HOST,
        port=port or settings.API_PORT,
        log_level=settings.LOG_LEVEL.lower(),
        access_log=False,  # RequestLoggingMiddleware logs requests
    )


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Pillary gateway")
    sub = parser.add_subparsers(dest="command", required=True)

    p_serve = sub.add_parser("serve", help="Run the API server")
    p_serve.add_argument("--host", default=None, help="Bind address")
    p_serve.add_argument("--port", type=int, default=None, help="Bind port")

    p_prewarm = sub.add_parser("prewarm", help="Run one prewarm cycle")
    p_prewarm.add_argument("--rows", type=int, default=None, help="Pyramid rows to prewarm")
    p_prewarm.add_argument("--base-url", default=None, help="Public API base URL")
    p_prewarm.add_argument("--concurrency", type=int, default=None, help="Concurrent requests")

    p_rows = sub.add_parser("rows", help="Print index spans of the first rows")
    p_rows.add_argument("--rows", type=int, default=8, help="Number of rows")

    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)

    if args.command == "serve":
        serve(args.host, args.port)
        return 0

    if args.command == "prewarm":
        out = asyncio.run(run_prewarm(args.rows, args.base_url, args.concurrency))
        logger.info(f"Prewarm -> {out}")
        # Non-zero exit only when nothing could be warmed
        return 1 if out["targets"] and not out["ok"] else 0

    for row, first, last in iter_rows(args.rows, settings.TOTAL_ITEMS):
        print(f"row {row}: {first}..{last}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
