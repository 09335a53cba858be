from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

import httpx
import structlog
from sqlalchemy import update

from backend.app.db import models
from backend.app.db.session import session_scope
from backend.app.parsers.media_extractor import extract_media
from backend.app.services.job_orchestrator import record_outcome
from backend.app.services.media_store import build_media_rows, insert_media_if_absent
from backend.app.services.page_fetcher import FetchError, build_client, fetch_html
from backend.app.services.task_queue import ScrapeTask

logger = structlog.get_logger(__name__)


class TargetProcessor:
    """Runs one target through fetch -> extract -> persist -> status update.

    Safe to run more than once for the same task: the claim and the terminal
    transition are conditional updates, media inserts skip existing rows, and
    the job counters move only when this execution performed the transition.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        timeout: Optional[float] = None,
        max_chars: Optional[int] = None,
    ):
        self.client = client or build_client(timeout)
        self._owns_client = client is None
        self.timeout = timeout
        self.max_chars = max_chars

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def process(self, task: ScrapeTask) -> Dict[str, Any]:
        job_id, url = task.job_id, task.url
        log = logger.bind(job_id=str(job_id), url=url)

        if not self._claim(job_id, url):
            log.info("target_skipped", reason="already_finished_or_missing")
            return {"status": "skipped", "media_found": 0, "error": None}

        try:
            html = await fetch_html(url, client=self.client, timeout=self.timeout, max_chars=self.max_chars)
        except FetchError as exc:
            message = str(exc) or type(exc).__name__
            self._finish(job_id, url, ok=False, error=message)
            log.warning("target_failed", error=message)
            return {"status": models.STATUS_FAILED, "media_found": 0, "error": message}

        items = extract_media(html, url)
        inserted = self._persist_media(job_id, url, items)
        self._finish(job_id, url, ok=True)
        log.info("target_done", media_found=len(items), media_inserted=inserted)
        return {"status": models.STATUS_DONE, "media_found": len(items), "error": None}

    def _claim(self, job_id: uuid.UUID, url: str) -> bool:
        with session_scope() as session:
            result = session.execute(
                update(models.ScrapeTarget)
                .where(
                    models.ScrapeTarget.job_id == job_id,
                    models.ScrapeTarget.source_url == url,
                    models.ScrapeTarget.status.in_(models.OPEN_STATUSES),
                )
                .values(status=models.STATUS_PROCESSING, updated_at=models.utcnow())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

    def _persist_media(self, job_id: uuid.UUID, url: str, items) -> int:
        rows = build_media_rows(job_id, url, items)
        if not rows:
            return 0
        with session_scope() as session:
            return insert_media_if_absent(session, rows)

    def _finish(self, job_id: uuid.UUID, url: str, *, ok: bool, error: Optional[str] = None) -> None:
        status = models.STATUS_DONE if ok else models.STATUS_FAILED
        with session_scope() as session:
            result = session.execute(
                update(models.ScrapeTarget)
                .where(
                    models.ScrapeTarget.job_id == job_id,
                    models.ScrapeTarget.source_url == url,
                    models.ScrapeTarget.status.in_(models.OPEN_STATUSES),
                )
                .values(status=status, error=None if ok else error, updated_at=models.utcnow())
                .execution_options(synchronize_session=False)
            )
            # Another delivery of the same task already finished this target.
            if result.rowcount == 0:
                return
            record_outcome(session, job_id, ok)
