from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.app.core.logging_config import configure_logging
from backend.app.core.settings import settings
from backend.app.services.job_orchestrator import InvalidSubmissionError, JobNotFoundError

from .routes import jobs, media, scrape

configure_logging(settings.log_level)

app = FastAPI(title="Media Scraper API", version="1.0.0")

app.include_router(scrape.router, prefix="/api", tags=["scrape"])
app.include_router(jobs.router, prefix="/api", tags=["jobs"])
app.include_router(media.router, prefix="/api", tags=["media"])


@app.exception_handler(InvalidSubmissionError)
async def invalid_submission(_request: Request, exc: InvalidSubmissionError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(JobNotFoundError)
async def job_not_found(_request: Request, _exc: JobNotFoundError):
    return JSONResponse(status_code=404, content={"error": "Not found"})


@app.exception_handler(RequestValidationError)
async def invalid_request(request: Request, exc: RequestValidationError):
    error = "Invalid query" if request.method == "GET" else "Invalid body"
    details = [{"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in exc.errors()]
    return JSONResponse(status_code=400, content={"error": error, "details": details})


@app.get("/health")
async def health():
    return {"ok": True}
