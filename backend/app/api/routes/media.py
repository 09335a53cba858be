from __future__ import annotations

import uuid
from typing import AsyncGenerator, Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from backend.app.db.session import get_session
from backend.app.services.media_store import clear_all, list_media
from backend.app.services.stream import MediaCursor, watch_media

from .jobs import SSE_HEADERS

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 24

MediaTypeFilter = Literal["all", "image", "video"]

router = APIRouter()


@router.get("/media")
def media(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    type: MediaTypeFilter = "all",
    search: str = "",
    db: Session = Depends(get_session),
):
    return list_media(db, page=page, limit=limit, media_type=type, search=search)


@router.delete("/media")
def clear_media(db: Session = Depends(get_session)):
    """Irreversibly delete all media, targets and jobs."""
    clear_all(db)
    db.commit()
    return {"ok": True}


@router.get("/media/stream")
async def media_stream(
    request: Request,
    job_id: Optional[uuid.UUID] = Query(default=None, alias="jobId"),
    type: MediaTypeFilter = "all",
    search: str = "",
) -> StreamingResponse:
    """Stream newly created media (``media``) or a ``ping`` heartbeat every tick."""
    cursor = MediaCursor(job_id=job_id, media_type=type, search=search)

    async def event_generator() -> AsyncGenerator[str, None]:
        feed = watch_media(cursor)
        try:
            async for event in feed:
                if await request.is_disconnected():
                    break
                yield event.encode()
        finally:
            await feed.aclose()

    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=SSE_HEADERS)
