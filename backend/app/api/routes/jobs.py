from __future__ import annotations

import uuid
from typing import AsyncGenerator

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from backend.app.services.job_orchestrator import JobNotFoundError, get_job_snapshot
from backend.app.services.stream import watch_job

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "X-Accel-Buffering": "no",
    "Connection": "keep-alive",
}


def _parse_job_id(job_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(job_id)
    except ValueError as exc:
        raise JobNotFoundError(f"Job {job_id} not found") from exc


@router.get("/jobs/{job_id}")
def job_status(job_id: str):
    return get_job_snapshot(_parse_job_id(job_id)).to_payload()


@router.get("/jobs/{job_id}/stream")
async def job_stream(job_id: str, request: Request) -> StreamingResponse:
    """Stream ``progress`` events until the job is terminal or the client leaves."""
    parsed_id = _parse_job_id(job_id)

    async def event_generator() -> AsyncGenerator[str, None]:
        feed = watch_job(parsed_id)
        try:
            async for event in feed:
                if await request.is_disconnected():
                    break
                yield event.encode()
        finally:
            await feed.aclose()

    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=SSE_HEADERS)
