from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, BigInteger, Text, DateTime, ForeignKey, UniqueConstraint, Index, Uuid
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

STATUS_QUEUED = "queued"
STATUS_PROCESSING = "processing"
STATUS_DONE = "done"
STATUS_FAILED = "failed"

TERMINAL_STATUSES = frozenset({STATUS_DONE, STATUS_FAILED})
OPEN_STATUSES = (STATUS_QUEUED, STATUS_PROCESSING)

MEDIA_TYPES = ("image", "video")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScrapeJob(Base):
    __tablename__ = "scrape_jobs"
    id = Column(Uuid(as_uuid=True), primary_key=True)
    status = Column(Text, nullable=False, default=STATUS_QUEUED)  # queued|processing|done|failed
    total_targets = Column(Integer, nullable=False)
    done_targets = Column(Integer, nullable=False, default=0)
    failed_targets = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

class ScrapeTarget(Base):
    __tablename__ = "scrape_targets"
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    job_id = Column(Uuid(as_uuid=True), ForeignKey("scrape_jobs.id", ondelete="CASCADE"), nullable=False)
    source_url = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default=STATUS_QUEUED)  # queued|processing|done|failed
    error = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True))
    __table_args__ = (UniqueConstraint("job_id", "source_url"),)

class MediaItem(Base):
    __tablename__ = "media_items"
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    job_id = Column(Uuid(as_uuid=True), ForeignKey("scrape_jobs.id", ondelete="CASCADE"), nullable=False)
    type = Column(Text, nullable=False)  # image|video
    source_url = Column(Text, nullable=False)
    media_url = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    __table_args__ = (
        UniqueConstraint("source_url", "media_url", "type", name="uq_media_items_source_media_type"),
        Index("idx_media_items_created_id", "created_at", "id"),
        Index("idx_media_items_job_created", "job_id", "created_at"),
    )
