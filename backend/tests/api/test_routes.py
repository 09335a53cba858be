import uuid
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from backend.app.api.dependencies import get_task_queue
from backend.app.api.main import app
from backend.app.db import models
from backend.app.db.session import session_scope
from backend.app.services.job_orchestrator import JobOrchestrator
from backend.app.services.task_queue import InMemoryTaskQueue

queue = InMemoryTaskQueue()
app.dependency_overrides[get_task_queue] = lambda: queue

client = TestClient(app)


def _seed_media():
    job_id = uuid.uuid4()
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    with session_scope() as session:
        session.add(models.ScrapeJob(id=job_id, status=models.STATUS_DONE, total_targets=2, done_targets=2, failed_targets=0))
        session.flush()
        rows = [
            ("image", "https://shop.test/", "https://cdn.test/shoe.png"),
            ("video", "https://shop.test/", "https://cdn.test/ad.mp4"),
            ("image", "https://blog.test/post", "https://img.test/cat.jpg"),
        ]
        for offset, (media_type, source_url, media_url) in enumerate(rows):
            session.add(
                models.MediaItem(
                    job_id=job_id,
                    type=media_type,
                    source_url=source_url,
                    media_url=media_url,
                    created_at=now + timedelta(seconds=offset),
                )
            )
    return job_id


def test_submit_and_get_status():
    resp = client.post("/api/scrape", json={"urls": ["example.com", "https://example.com/", "not a url"]})
    assert resp.status_code == 200
    body = resp.json()
    assert body["accepted"] == 2

    status = client.get(f"/api/jobs/{body['jobId']}")
    assert status.status_code == 200
    payload = status.json()
    assert payload["id"] == body["jobId"]
    assert payload["status"] == "queued"
    assert payload["totalTargets"] == 2
    assert payload["doneTargets"] == 0
    assert payload["failedTargets"] == 0


def test_submit_rejects_batches_without_valid_urls():
    resp = client.post("/api/scrape", json={"urls": ["ftp://x.test", "  "]})
    assert resp.status_code == 400
    assert resp.json() == {"error": "No valid urls"}


def test_submit_rejects_malformed_body():
    for body in ({"urls": []}, {"urls": ["a.test", ""]}, {"urls": "https://a.test"}, {}):
        resp = client.post("/api/scrape", json=body)
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid body"

    with session_scope() as session:
        assert session.query(models.ScrapeJob).count() == 0


def test_unknown_job_is_not_found():
    for job_id in (str(uuid.uuid4()), "not-a-uuid"):
        resp = client.get(f"/api/jobs/{job_id}")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Not found"}


def test_job_stream_for_finished_job():
    job_id = uuid.uuid4()
    with session_scope() as session:
        session.add(models.ScrapeJob(id=job_id, status=models.STATUS_DONE, total_targets=1, done_targets=1, failed_targets=0))

    with client.stream("GET", f"/api/jobs/{job_id}/stream") as resp:
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        body = resp.read().decode()

    assert body.startswith("event: progress\n")
    assert '"status": "done"' in body


def test_job_stream_unknown_job():
    resp = client.get("/api/jobs/not-a-uuid/stream")
    assert resp.status_code == 404


def test_list_media_with_filters():
    _seed_media()

    resp = client.get("/api/media", params={"limit": 2})
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 3
    assert body["totalPages"] == 2
    assert [item["mediaUrl"] for item in body["items"]] == ["https://img.test/cat.jpg", "https://cdn.test/ad.mp4"]

    videos = client.get("/api/media", params={"type": "video"}).json()
    assert [item["mediaUrl"] for item in videos["items"]] == ["https://cdn.test/ad.mp4"]

    searched = client.get("/api/media", params={"search": "https://shop.test image"}).json()
    assert searched["total"] == 0
    searched = client.get("/api/media", params={"search": "shop.test/ shoe"}).json()
    assert [item["mediaUrl"] for item in searched["items"]] == ["https://cdn.test/shoe.png"]


def test_list_media_rejects_bad_query():
    for params in ({"limit": 500}, {"page": 0}, {"type": "audio"}):
        resp = client.get("/api/media", params=params)
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid query"


def test_delete_media_clears_everything():
    job_id = _seed_media()

    resp = client.delete("/api/media")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}

    assert client.get("/api/media").json()["total"] == 0
    assert client.get(f"/api/jobs/{job_id}").status_code == 404


def test_scrape_submission_can_be_recorded_through_orchestrator():
    resp = client.post("/api/scrape", json={"urls": ["https://one.test"]})
    job_id = uuid.UUID(resp.json()["jobId"])

    JobOrchestrator(queue).record_outcome(job_id, True)

    assert client.get(f"/api/jobs/{job_id}").json()["status"] == "done"


def test_health():
    assert client.get("/health").json() == {"ok": True}
