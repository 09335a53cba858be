"""Poll-and-diff feeds for live job progress and newly discovered media.

Both feeds are async generators of :class:`StreamEvent`.  The HTTP layer
renders each event as a Server-Sent Event frame and closes the generator as
soon as the client goes away, which ends the polling loop.  Closing a feed
never touches the job it is watching.

Job progress feed::

    event: progress
    data: {"id": "...", "status": "processing", "totalTargets": 3, ...}

It ends after a terminal snapshot (``done`` / ``failed``), or after a single
``error`` event when the job does not exist.

Media feed::

    event: media
    data: [{"id": 7, "type": "image", "mediaUrl": "...", ...}, ...]

    event: ping
    data: {}

Store queries run in a worker thread so a locked database never stalls the
event loop.

The cursor is the ``(created_at, id)`` of the last delivered item; each poll
selects rows strictly after it in that order, so no row is delivered twice
and rows sharing a timestamp are not skipped at batch boundaries.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog
from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError

from backend.app.core.settings import settings
from backend.app.db import models
from backend.app.db.session import session_scope
from backend.app.services.job_orchestrator import JobNotFoundError, get_job_snapshot
from backend.app.services.media_store import media_filters, serialize_media

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StreamEvent:
    event: str
    data: Any

    def encode(self) -> str:
        return f"event: {self.event}\ndata: {json.dumps(self.data)}\n\n"


class MediaCursor:
    def __init__(
        self,
        *,
        job_id: Optional[uuid.UUID] = None,
        media_type: str = "all",
        search: Optional[str] = None,
        batch_size: Optional[int] = None,
    ):
        self.job_id = job_id
        self.media_type = media_type
        self.search = search
        self.batch_size = batch_size or settings.stream_batch_size
        self.last_created_at: Optional[datetime] = None
        self.last_id: Optional[int] = None

    def poll(self) -> List[Dict[str, Any]]:
        """Return the next batch of matching items and advance past it."""
        item = models.MediaItem
        filters = media_filters(job_id=self.job_id, media_type=self.media_type, search=self.search)
        if self.last_created_at is not None:
            filters.append(
                or_(
                    item.created_at > self.last_created_at,
                    and_(item.created_at == self.last_created_at, item.id > self.last_id),
                )
            )

        stmt = select(item)
        if filters:
            stmt = stmt.where(*filters)
        stmt = stmt.order_by(item.created_at.asc(), item.id.asc()).limit(self.batch_size)

        with session_scope() as session:
            rows = session.execute(stmt).scalars().all()
            if rows:
                self.last_created_at = rows[-1].created_at
                self.last_id = rows[-1].id
            return [serialize_media(row) for row in rows]


async def watch_job(job_id: uuid.UUID, *, interval: Optional[float] = None) -> AsyncIterator[StreamEvent]:
    interval = interval if interval is not None else settings.stream_interval_seconds
    while True:
        try:
            snapshot = await asyncio.to_thread(get_job_snapshot, job_id)
        except JobNotFoundError:
            yield StreamEvent("error", {"error": "Not found"})
            return
        except SQLAlchemyError as exc:
            logger.exception("job_feed_query_failed", job_id=str(job_id))
            yield StreamEvent("error", {"error": str(exc)})
            return

        yield StreamEvent("progress", snapshot.to_payload())
        if snapshot.is_terminal:
            return
        await asyncio.sleep(interval)


async def watch_media(cursor: MediaCursor, *, interval: Optional[float] = None) -> AsyncIterator[StreamEvent]:
    interval = interval if interval is not None else settings.stream_interval_seconds
    while True:
        try:
            items = await asyncio.to_thread(cursor.poll)
        except SQLAlchemyError as exc:
            logger.exception("media_feed_query_failed", job_id=str(cursor.job_id) if cursor.job_id else None)
            yield StreamEvent("error", {"error": str(exc)})
            return

        if items:
            yield StreamEvent("media", items)
        else:
            yield StreamEvent("ping", {})
        await asyncio.sleep(interval)
