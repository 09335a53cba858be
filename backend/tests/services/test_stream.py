from __future__ import annotations

import json
import threading
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from backend.app.db import models
from backend.app.db.session import session_scope
from backend.app.services.job_orchestrator import JobOrchestrator
from backend.app.services import stream as stream_module
from backend.app.services.stream import MediaCursor, StreamEvent, watch_job, watch_media
from backend.app.services.task_queue import InMemoryTaskQueue

BASE_TIME = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _seed_job(total_targets: int = 1) -> uuid.UUID:
    job_id = uuid.uuid4()
    with session_scope() as session:
        session.add(
            models.ScrapeJob(id=job_id, status=models.STATUS_QUEUED, total_targets=total_targets, done_targets=0, failed_targets=0)
        )
    return job_id


def _add_media(job_id: uuid.UUID, media_url: str, *, seconds: int, media_type: str = "image") -> None:
    with session_scope() as session:
        session.add(
            models.MediaItem(
                job_id=job_id,
                type=media_type,
                source_url="https://site.test/",
                media_url=media_url,
                created_at=BASE_TIME + timedelta(seconds=seconds),
            )
        )


def test_stream_event_encoding():
    frame = StreamEvent("progress", {"status": "done"}).encode()
    assert frame == 'event: progress\ndata: {"status": "done"}\n\n'


def test_media_cursor_delivers_each_item_once():
    job_id = _seed_job()
    _add_media(job_id, "https://cdn.test/1.png", seconds=1)
    _add_media(job_id, "https://cdn.test/2.png", seconds=2)

    cursor = MediaCursor(batch_size=10)
    assert [item["mediaUrl"] for item in cursor.poll()] == ["https://cdn.test/1.png", "https://cdn.test/2.png"]

    _add_media(job_id, "https://cdn.test/3.png", seconds=3)
    assert [item["mediaUrl"] for item in cursor.poll()] == ["https://cdn.test/3.png"]
    assert cursor.poll() == []


def test_media_cursor_does_not_skip_equal_timestamps_across_batches():
    job_id = _seed_job()
    for name in ("a", "b", "c"):
        _add_media(job_id, f"https://cdn.test/{name}.png", seconds=5)

    cursor = MediaCursor(batch_size=2)
    first = cursor.poll()
    second = cursor.poll()

    assert len(first) == 2
    assert len(second) == 1
    delivered = [item["mediaUrl"] for item in first + second]
    assert sorted(delivered) == ["https://cdn.test/a.png", "https://cdn.test/b.png", "https://cdn.test/c.png"]


def test_media_cursor_filters_by_job_and_type():
    first_job, second_job = _seed_job(), _seed_job()
    _add_media(first_job, "https://cdn.test/1.png", seconds=1)
    _add_media(first_job, "https://cdn.test/1.mp4", seconds=2, media_type="video")
    _add_media(second_job, "https://cdn.test/2.png", seconds=3)

    by_job = MediaCursor(job_id=first_job).poll()
    by_type = MediaCursor(media_type="video").poll()

    assert [item["mediaUrl"] for item in by_job] == ["https://cdn.test/1.png", "https://cdn.test/1.mp4"]
    assert [item["mediaUrl"] for item in by_type] == ["https://cdn.test/1.mp4"]


@pytest.mark.asyncio
async def test_watch_job_ends_after_terminal_snapshot():
    orchestrator = JobOrchestrator(InMemoryTaskQueue())
    job_id = _seed_job(total_targets=2)
    orchestrator.record_outcome(job_id, True)

    feed = watch_job(job_id, interval=0.01)
    first = await feed.__anext__()
    assert first.event == "progress"
    assert first.data["status"] == "processing"

    orchestrator.record_outcome(job_id, True)
    events = [event async for event in feed]

    assert events[-1].event == "progress"
    assert events[-1].data["status"] == "done"
    assert events[-1].data["doneTargets"] == 2


@pytest.mark.asyncio
async def test_watch_job_reports_missing_job():
    events = [event async for event in watch_job(uuid.uuid4(), interval=0.01)]

    assert len(events) == 1
    assert events[0].event == "error"
    assert events[0].data == {"error": "Not found"}


@pytest.mark.asyncio
async def test_watch_media_pings_then_delivers():
    job_id = _seed_job()
    feed = watch_media(MediaCursor(job_id=job_id), interval=0.01)

    idle = await feed.__anext__()
    assert idle.event == "ping"
    assert idle.encode() == "event: ping\ndata: {}\n\n"

    _add_media(job_id, "https://cdn.test/new.png", seconds=1)
    delivered = await feed.__anext__()
    await feed.aclose()

    assert delivered.event == "media"
    assert [item["mediaUrl"] for item in delivered.data] == ["https://cdn.test/new.png"]
    assert json.loads(delivered.encode().split("data: ", 1)[1])[0]["jobId"] == str(job_id)


@pytest.mark.asyncio
async def test_feeds_query_the_store_off_the_event_loop_thread(monkeypatch):
    loop_thread = threading.get_ident()
    query_threads = []

    def fake_poll():
        query_threads.append(threading.get_ident())
        return []

    def fake_snapshot(job_id):
        query_threads.append(threading.get_ident())
        raise stream_module.JobNotFoundError(str(job_id))

    cursor = MediaCursor()
    monkeypatch.setattr(cursor, "poll", fake_poll)
    monkeypatch.setattr(stream_module, "get_job_snapshot", fake_snapshot)

    media_feed = watch_media(cursor, interval=0.01)
    assert (await media_feed.__anext__()).event == "ping"
    await media_feed.aclose()

    job_events = [event async for event in watch_job(uuid.uuid4(), interval=0.01)]
    assert [event.event for event in job_events] == ["error"]

    assert len(query_threads) == 2
    assert loop_thread not in query_threads
