"""Every test runs against a throwaway SQLite database.

``DATABASE_URL`` must be set before any ``backend.app`` module is imported,
because the settings object and the engine are built at import time.
"""

import os
import tempfile
from pathlib import Path

_DB_DIR = Path(tempfile.mkdtemp(prefix="media-scraper-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from sqlalchemy import delete

from backend.app.db import models
from backend.app.db.session import init_db, session_scope

init_db()


@pytest.fixture(autouse=True)
def clean_db():
    with session_scope() as session:
        session.execute(delete(models.MediaItem))
        session.execute(delete(models.ScrapeTarget))
        session.execute(delete(models.ScrapeJob))
    yield
