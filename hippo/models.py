"""Hippo Transcribe - SQLAlchemy ORM models.

Database tables:
1. transcription_jobs
2. transcription_metadata
"""

from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class JobStatus(StrEnum):
    """Lifecycle states of a transcription job.

    Transitions are monotone: pending -> processing -> {completed | failed}.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class TranscriptionJob(Base):
    """One audio-file-to-transcript unit of work."""

    __tablename__ = "transcription_jobs"

    # Generated at creation time (uuid4), never by the provider
    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    # Source audio object key in the audio bucket
    audio_key: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=JobStatus.PENDING, index=True
    )

    # Timestamps (completed_at is set iff status is terminal)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, index=True
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Last re-enqueue by the stale job sweep (None: only the initial delivery)
    dispatched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Set iff status is completed
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    word_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cost_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)

    deepgram_request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)


class TranscriptionMetadata(Base):
    """Derived metadata for a completed job.

    At most one row per job; written in the same transaction as the
    job's transition to completed.
    """

    __tablename__ = "transcription_metadata"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    job_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("transcription_jobs.id"), nullable=False, index=True
    )

    # Key of the transcript artifact in the transcription bucket
    transcription_key: Mapped[str] = mapped_column(Text, nullable=False)

    speakers_detected: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    language_detected: Mapped[str | None] = mapped_column(String(16), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (UniqueConstraint("job_id", name="uq_metadata_job_id"),)
