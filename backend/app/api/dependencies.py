from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from backend.app.core.settings import settings
from backend.app.services.job_orchestrator import JobOrchestrator
from backend.app.services.task_queue import RedisTaskQueue, TaskQueue


@lru_cache(maxsize=1)
def get_task_queue() -> TaskQueue:
    return RedisTaskQueue.from_url(settings.redis_url, settings.scrape_queue_name)


def get_orchestrator(queue: TaskQueue = Depends(get_task_queue)) -> JobOrchestrator:
    return JobOrchestrator(queue)
