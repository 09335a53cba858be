"""Task transport between the submission API and the worker pool.

Delivery is at-least-once: a task handed out by ``get`` stays owned by the
queue until ``ack``.  Consumers must therefore be idempotent.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Protocol

import structlog
from redis import asyncio as aioredis

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ScrapeTask:
    job_id: uuid.UUID
    url: str
    raw: Optional[str] = field(default=None, compare=False)

    def to_json(self) -> str:
        return json.dumps({"jobId": str(self.job_id), "url": self.url})

    @classmethod
    def from_json(cls, raw: str) -> "ScrapeTask":
        data = json.loads(raw)
        return cls(job_id=uuid.UUID(data["jobId"]), url=data["url"], raw=raw)


class TaskQueue(Protocol):
    async def enqueue_many(self, tasks: Iterable[ScrapeTask]) -> int: ...

    async def get(self, timeout: float) -> Optional[ScrapeTask]: ...

    async def ack(self, task: ScrapeTask) -> None: ...

    async def recover(self) -> int: ...


class InMemoryTaskQueue:
    """Single-process queue backed by :class:`asyncio.Queue`."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[ScrapeTask] = asyncio.Queue()
        self._unacked: List[ScrapeTask] = []

    async def enqueue_many(self, tasks: Iterable[ScrapeTask]) -> int:
        count = 0
        for task in tasks:
            self._queue.put_nowait(task)
            count += 1
        return count

    async def get(self, timeout: float) -> Optional[ScrapeTask]:
        try:
            task = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        self._unacked.append(task)
        return task

    async def ack(self, task: ScrapeTask) -> None:
        try:
            self._unacked.remove(task)
        except ValueError:
            pass

    async def recover(self) -> int:
        recovered = len(self._unacked)
        for task in self._unacked:
            self._queue.put_nowait(task)
        self._unacked.clear()
        return recovered

    def pending(self) -> int:
        return self._queue.qsize()


class RedisTaskQueue:
    """Reliable Redis list queue.

    ``get`` atomically moves a payload from ``<name>:pending`` to
    ``<name>:processing``; ``ack`` removes it from the processing list.
    Payloads left in the processing list by a crashed worker are pushed back
    by ``recover``, which the worker calls on startup.
    """

    def __init__(self, client, name: str) -> None:
        self.client = client
        self.pending_key = f"{name}:pending"
        self.processing_key = f"{name}:processing"

    @classmethod
    def from_url(cls, url: str, name: str) -> "RedisTaskQueue":
        return cls(aioredis.from_url(url, decode_responses=True), name)

    async def enqueue_many(self, tasks: Iterable[ScrapeTask]) -> int:
        payloads = [task.to_json() for task in tasks]
        if not payloads:
            return 0
        await self.client.rpush(self.pending_key, *payloads)
        return len(payloads)

    async def get(self, timeout: float) -> Optional[ScrapeTask]:
        raw = await self.client.blmove(self.pending_key, self.processing_key, timeout, "LEFT", "RIGHT")
        if raw is None:
            return None
        try:
            return ScrapeTask.from_json(raw)
        except (ValueError, KeyError, TypeError):
            logger.error("task_payload_invalid", payload=raw)
            await self.client.lrem(self.processing_key, 1, raw)
            return None

    async def ack(self, task: ScrapeTask) -> None:
        await self.client.lrem(self.processing_key, 1, task.raw or task.to_json())

    async def recover(self) -> int:
        recovered = 0
        while await self.client.lmove(self.processing_key, self.pending_key, "RIGHT", "LEFT") is not None:
            recovered += 1
        if recovered:
            logger.warning("tasks_recovered", count=recovered, queue=self.pending_key)
        return recovered

    async def aclose(self) -> None:
        await self.client.aclose()
