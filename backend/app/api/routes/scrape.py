from typing import Annotated, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from backend.app.services.job_orchestrator import JobOrchestrator

from ..dependencies import get_orchestrator

router = APIRouter()

class ScrapeRequest(BaseModel):
    urls: List[Annotated[str, Field(min_length=1)]] = Field(min_length=1)

@router.post("/scrape")
async def create_job(body: ScrapeRequest, orchestrator: JobOrchestrator = Depends(get_orchestrator)):
    """Normalise the submitted URLs, create a job and enqueue one task per target."""
    result = await orchestrator.submit(body.urls)
    return {"jobId": str(result.job_id), "accepted": result.accepted}
