from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Optional, Protocol, Set

import structlog

from backend.app.core.settings import settings
from backend.app.services.task_queue import ScrapeTask, TaskQueue

logger = structlog.get_logger(__name__)


class Processor(Protocol):
    def process(self, task: ScrapeTask) -> Awaitable[Any]: ...


class WorkerPool:
    """Pulls scrape tasks from a queue and runs at most ``concurrency`` at once.

    A slot is taken before a task is pulled, so the queue is only drained as
    fast as capacity frees up. An exception from one task is logged and
    counted; the pool keeps going. Tasks are acked once their processor
    returns. A task whose processor raised is left unacked so the transport
    can deliver it again.
    """

    def __init__(
        self,
        queue: TaskQueue,
        processor: Processor,
        *,
        concurrency: Optional[int] = None,
        poll_timeout: float = 1.0,
    ):
        self.queue = queue
        self.processor = processor
        self.concurrency = max(1, concurrency or settings.scrape_concurrency)
        self.poll_timeout = poll_timeout
        self.sem = asyncio.Semaphore(self.concurrency)
        self.processed = 0
        self.failed = 0
        self._inflight: Set[asyncio.Task] = set()
        self._stopping = False

    @property
    def in_flight(self) -> int:
        return len(self._inflight)

    def stop(self) -> None:
        """Stop pulling new tasks. In-flight tasks are left to finish."""
        self._stopping = True

    async def run(self, *, stop_when_idle: bool = False) -> None:
        logger.info("worker_pool_started", concurrency=self.concurrency)
        while not self._stopping:
            await self.sem.acquire()
            if self._stopping:
                self.sem.release()
                break

            try:
                task = await self.queue.get(self.poll_timeout)
            except Exception:
                self.sem.release()
                logger.exception("task_queue_get_failed")
                await asyncio.sleep(self.poll_timeout)
                continue

            if task is None:
                self.sem.release()
                if stop_when_idle and not self._inflight:
                    break
                continue

            runner = asyncio.create_task(self._execute(task))
            self._inflight.add(runner)
            runner.add_done_callback(self._inflight.discard)

        await self.drain()
        logger.info("worker_pool_stopped", processed=self.processed, failed=self.failed)

    async def drain(self) -> None:
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _execute(self, task: ScrapeTask) -> None:
        try:
            await self.processor.process(task)
        except Exception:
            self.failed += 1
            logger.exception("task_failed", job_id=str(task.job_id), url=task.url)
            return
        finally:
            self.sem.release()

        self.processed += 1
        try:
            await self.queue.ack(task)
        except Exception:
            logger.exception("task_ack_failed", job_id=str(task.job_id), url=task.url)
