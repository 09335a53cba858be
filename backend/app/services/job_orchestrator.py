from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy import case, update
from sqlalchemy.orm import Session

from backend.app.core.settings import settings
from backend.app.db import models
from backend.app.db.session import session_scope
from backend.app.parsers.url_normalizer import normalize_urls
from backend.app.services.task_queue import ScrapeTask, TaskQueue

logger = structlog.get_logger(__name__)


class InvalidSubmissionError(ValueError):
    """Raised when a submission contains no usable URL."""


class JobNotFoundError(LookupError):
    """Raised when a job id does not exist."""


@dataclass(frozen=True)
class SubmitResult:
    job_id: uuid.UUID
    accepted: int


@dataclass(frozen=True)
class JobSnapshot:
    id: uuid.UUID
    status: str
    created_at: datetime
    total_targets: int
    done_targets: int
    failed_targets: int

    @classmethod
    def from_model(cls, job: models.ScrapeJob) -> "JobSnapshot":
        return cls(
            id=job.id,
            status=job.status,
            created_at=job.created_at,
            total_targets=job.total_targets,
            done_targets=job.done_targets,
            failed_targets=job.failed_targets,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in models.TERMINAL_STATUSES

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "status": self.status,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "totalTargets": self.total_targets,
            "doneTargets": self.done_targets,
            "failedTargets": self.failed_targets,
        }


def derive_status(total: int, done: int, failed: int) -> str:
    """Job status as a pure function of its counters."""
    finished = done + failed
    if finished == 0:
        return models.STATUS_QUEUED
    if finished < total:
        return models.STATUS_PROCESSING
    return models.STATUS_FAILED if failed > 0 else models.STATUS_DONE


def record_outcome(session: Session, job_id: uuid.UUID, ok: bool) -> Optional[JobSnapshot]:
    """Count one finished target against ``job_id`` inside ``session``.

    The counter increment and the status recomputation happen in a single
    UPDATE, evaluated against the row as locked by the store, so concurrent
    completions cannot lose updates. The statement only matches while
    ``done + failed < total``; once a job is terminal it never changes again.
    """
    job = models.ScrapeJob
    done = job.done_targets + (1 if ok else 0)
    failed = job.failed_targets + (0 if ok else 1)
    status = case(
        (
            done + failed >= job.total_targets,
            case((failed > 0, models.STATUS_FAILED), else_=models.STATUS_DONE),
        ),
        else_=models.STATUS_PROCESSING,
    )
    stmt = (
        update(job)
        .where(job.id == job_id, job.done_targets + job.failed_targets < job.total_targets)
        .values(done_targets=done, failed_targets=failed, status=status)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    if result.rowcount == 0:
        logger.warning("job_outcome_ignored", job_id=str(job_id), ok=ok)

    refreshed = session.get(job, job_id, populate_existing=True)
    if refreshed is None:
        return None
    return JobSnapshot.from_model(refreshed)


def get_job_snapshot(job_id: uuid.UUID) -> JobSnapshot:
    with session_scope() as session:
        job = session.get(models.ScrapeJob, job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return JobSnapshot.from_model(job)


class JobOrchestrator:
    def __init__(self, queue: TaskQueue, *, max_urls: Optional[int] = None):
        self.queue = queue
        self.max_urls = max_urls or settings.max_urls_per_request

    async def submit(self, raw_urls: Iterable[str]) -> SubmitResult:
        urls = normalize_urls(raw_urls, limit=self.max_urls)
        if not urls:
            raise InvalidSubmissionError("No valid urls")

        job_id = uuid.uuid4()
        self._create_job_and_targets(job_id, urls)

        await self.queue.enqueue_many(ScrapeTask(job_id=job_id, url=url) for url in urls)
        logger.info("job_submitted", job_id=str(job_id), accepted=len(urls))
        return SubmitResult(job_id=job_id, accepted=len(urls))

    def _create_job_and_targets(self, job_id: uuid.UUID, urls: List[str]) -> None:
        with session_scope() as session:
            session.add(
                models.ScrapeJob(
                    id=job_id,
                    status=derive_status(len(urls), 0, 0),
                    total_targets=len(urls),
                    done_targets=0,
                    failed_targets=0,
                )
            )
            session.flush()
            session.add_all(
                models.ScrapeTarget(job_id=job_id, source_url=url, status=models.STATUS_QUEUED)
                for url in urls
            )

    def record_outcome(self, job_id: uuid.UUID, ok: bool) -> JobSnapshot:
        with session_scope() as session:
            snapshot = record_outcome(session, job_id, ok)
        if snapshot is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return snapshot

    def get_status(self, job_id: uuid.UUID) -> JobSnapshot:
        return get_job_snapshot(job_id)
