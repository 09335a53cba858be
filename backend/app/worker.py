"""Scrape worker process: drains the Redis task queue through a bounded pool.

Usage::

    media-scraper-worker --concurrency 25
    media-scraper-worker --burst   # exit once the queue is empty
"""

from __future__ import annotations

import argparse
import asyncio
import signal
from typing import Optional, Sequence

import structlog

from backend.app.core.logging_config import configure_logging
from backend.app.core.settings import settings
from backend.app.services.target_processor import TargetProcessor
from backend.app.services.task_queue import RedisTaskQueue
from backend.app.services.worker_pool import WorkerPool

logger = structlog.get_logger(__name__)


async def run_worker(*, concurrency: Optional[int] = None, burst: bool = False) -> None:
    queue = RedisTaskQueue.from_url(settings.redis_url, settings.scrape_queue_name)
    processor = TargetProcessor()
    pool = WorkerPool(queue, processor, concurrency=concurrency)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, pool.stop)
        except NotImplementedError:
            pass

    try:
        await queue.recover()
        await pool.run(stop_when_idle=burst)
    finally:
        await processor.aclose()
        await queue.aclose()


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Run the media scrape worker.")
    parser.add_argument("--concurrency", type=int, default=None, help="max in-flight targets (default: SCRAPE_CONCURRENCY)")
    parser.add_argument("--burst", action="store_true", help="exit when the queue is empty")
    args = parser.parse_args(argv)

    configure_logging(settings.log_level)
    asyncio.run(run_worker(concurrency=args.concurrency, burst=args.burst))


if __name__ == "__main__":
    main()
