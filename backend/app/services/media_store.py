from __future__ import annotations

import math
import re
import uuid
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.app.db import models
from backend.app.parsers.media_extractor import ExtractedMedia

MEDIA_CONFLICT_COLUMNS = ["source_url", "media_url", "type"]
INSERT_CHUNK_SIZE = 500

SCHEME_PREFIX_RE = re.compile(r"^https?://", re.IGNORECASE)
TRAILING_SLASH_RE = re.compile(r"/+$")

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def build_media_rows(job_id: uuid.UUID, source_url: str, items: Iterable[ExtractedMedia]) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    seen = set()
    for item in items:
        key = (item.type, item.media_url)
        if key in seen:
            continue
        seen.add(key)
        rows.append(
            {
                "job_id": job_id,
                "source_url": source_url,
                "media_url": item.media_url,
                "type": item.type,
                "created_at": models.utcnow(),
            }
        )
    return rows


def insert_media_if_absent(session: Session, rows: List[Dict[str, Any]]) -> int:
    """Insert media rows, skipping any that already exist.

    Uniqueness is ``(source_url, media_url, type)``. PostgreSQL and SQLite use
    ``ON CONFLICT DO NOTHING``; other backends fall back to one savepoint per
    row. Returns the number of rows actually inserted.
    """
    if not rows:
        return 0

    insert_fn = _DIALECT_INSERTS.get(session.get_bind().dialect.name)
    if insert_fn is not None:
        inserted = 0
        for start in range(0, len(rows), INSERT_CHUNK_SIZE):
            stmt = insert_fn(models.MediaItem.__table__).values(rows[start:start + INSERT_CHUNK_SIZE]).on_conflict_do_nothing(
                index_elements=MEDIA_CONFLICT_COLUMNS
            )
            inserted += max(session.execute(stmt).rowcount or 0, 0)
        return inserted

    inserted = 0
    for row in rows:
        try:
            with session.begin_nested():
                session.add(models.MediaItem(**row))
            inserted += 1
        except IntegrityError:
            continue
    return inserted


def expand_search_token(token: str) -> List[str]:
    """Variants of a search token: with and without scheme and trailing slash."""
    trimmed = token.strip()
    if not trimmed:
        return []
    variants = [trimmed]

    def _add(value: str) -> None:
        if value and value not in variants:
            variants.append(value)

    no_scheme = SCHEME_PREFIX_RE.sub("", trimmed)
    _add(no_scheme)
    if trimmed.endswith("/"):
        _add(TRAILING_SLASH_RE.sub("", trimmed))
    if no_scheme.endswith("/"):
        _add(TRAILING_SLASH_RE.sub("", no_scheme))
    return variants


def build_search_filter(search: Optional[str]):
    """Every whitespace-separated token must match source or media URL."""
    tokens = (search or "").split()
    clauses = []
    for token in tokens:
        alternatives = []
        for variant in expand_search_token(token):
            alternatives.append(models.MediaItem.source_url.icontains(variant, autoescape=True))
            alternatives.append(models.MediaItem.media_url.icontains(variant, autoescape=True))
        if alternatives:
            clauses.append(or_(*alternatives))
    if not clauses:
        return None
    return and_(*clauses)


def media_filters(
    *,
    job_id: Optional[uuid.UUID] = None,
    media_type: str = "all",
    search: Optional[str] = None,
) -> List[Any]:
    filters: List[Any] = []
    if job_id is not None:
        filters.append(models.MediaItem.job_id == job_id)
    if media_type and media_type != "all":
        filters.append(models.MediaItem.type == media_type)
    search_filter = build_search_filter(search)
    if search_filter is not None:
        filters.append(search_filter)
    return filters


def serialize_media(item: models.MediaItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "jobId": str(item.job_id),
        "type": item.type,
        "sourceUrl": item.source_url,
        "mediaUrl": item.media_url,
        "createdAt": item.created_at.isoformat() if item.created_at else None,
    }


def list_media(
    session: Session,
    *,
    page: int = 1,
    limit: int = 24,
    media_type: str = "all",
    search: Optional[str] = None,
) -> Dict[str, Any]:
    filters = media_filters(media_type=media_type, search=search)

    count_stmt = select(func.count()).select_from(models.MediaItem)
    stmt = select(models.MediaItem)
    if filters:
        count_stmt = count_stmt.where(*filters)
        stmt = stmt.where(*filters)

    total = session.execute(count_stmt).scalar_one()

    stmt = (
        stmt
        .order_by(models.MediaItem.created_at.desc(), models.MediaItem.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = session.execute(stmt).scalars().all()

    return {
        "items": [serialize_media(item) for item in items],
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }


def clear_all(session: Session) -> Dict[str, int]:
    """Delete every media item, target and job."""
    media = session.execute(delete(models.MediaItem)).rowcount
    targets = session.execute(delete(models.ScrapeTarget)).rowcount
    jobs = session.execute(delete(models.ScrapeJob)).rowcount
    return {"media": media or 0, "targets": targets or 0, "jobs": jobs or 0}
