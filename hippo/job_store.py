"""Hippo Transcribe - Job Store.

Durable record of each transcription job and its state machine:

    pending -> processing -> {completed | failed}

Each operation is one unit of work with its own session. Transitions are
conditional keyed UPDATEs (WHERE id = ? AND status IN (...)), so two
handlers delivered the same job concurrently cannot interleave a
read-modify-write; the loser observes the winner's state.

Terminal states are never left. The only write allowed on a terminal job is
a diagnostic overwrite of error_message (failed) or a replay of the same
completion fields (completed, last write wins).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from hippo.errors import AlreadyTerminalError, JobNotFoundError, StoreWriteError
from hippo.models import (
    TERMINAL_STATUSES,
    JobStatus,
    TranscriptionJob,
    TranscriptionMetadata,
    utc_now,
)

logger = logging.getLogger(__name__)

# States a job may complete or fail from
_ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)


def generate_job_id() -> str:
    """Generate a unique job ID (uuid4, 36 chars)."""
    return str(uuid.uuid4())


# --- Records ---


@dataclass(frozen=True)
class JobRecord:
    """Read-only snapshot of a transcription_jobs row."""

    id: str
    audio_key: str
    status: str
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    error_message: str | None
    file_size: int | None
    duration_seconds: float | None
    word_count: int | None
    deepgram_request_id: str | None
    cost_cents: int | None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_row(cls, row: TranscriptionJob) -> JobRecord:
        return cls(
            id=row.id,
            audio_key=row.audio_key,
            status=row.status,
            created_at=row.created_at,
            started_at=row.started_at,
            completed_at=row.completed_at,
            error_message=row.error_message,
            file_size=row.file_size,
            duration_seconds=row.duration_seconds,
            word_count=row.word_count,
            deepgram_request_id=row.deepgram_request_id,
            cost_cents=row.cost_cents,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MetadataRecord:
    """Read-only snapshot of a transcription_metadata row."""

    job_id: str
    transcription_key: str
    speakers_detected: int
    confidence_score: float
    language_detected: str | None


# --- Store ---


class JobStore:
    """Keyed state transitions over transcription_jobs / transcription_metadata."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _session(self) -> Session:
        return self._session_factory()

    # --- Creation ---

    def create_job(
        self,
        audio_key: str,
        file_size: int | None = None,
        job_id: str | None = None,
    ) -> str:
        """Insert a new job in the pending state.

        Args:
            audio_key: Source audio object key.
            file_size: Size of the audio object in bytes.
            job_id: Optional explicit identifier (generated if omitted).

        Returns:
            The job identifier.

        Raises:
            StoreWriteError: If the insert fails.
        """
        job_id = job_id or generate_job_id()
        session = self._session()
        try:
            session.add(
                TranscriptionJob(
                    id=job_id,
                    audio_key=audio_key,
                    status=JobStatus.PENDING,
                    created_at=utc_now(),
                    file_size=file_size,
                )
            )
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreWriteError(f"Failed to create job for {audio_key}: {e}") from e
        finally:
            session.close()

        logger.info("Created job %s for %s", job_id, audio_key)
        return job_id

    # --- Transitions ---

    def transition_to_processing(self, job_id: str) -> bool:
        """Move a pending job to processing.

        Returns:
            True if the job moved, False if it was already processing
            (another delivery got there first).

        Raises:
            JobNotFoundError: If the job does not exist.
            AlreadyTerminalError: If the job is completed or failed.
            StoreWriteError: If the update fails.
        """
        session = self._session()
        try:
            result = session.execute(
                update(TranscriptionJob)
                .where(
                    TranscriptionJob.id == job_id,
                    TranscriptionJob.status == JobStatus.PENDING,
                )
                .values(status=JobStatus.PROCESSING, started_at=utc_now())
            )
            if result.rowcount == 1:
                session.commit()
                return True

            job = self._get_row(session, job_id)
            session.rollback()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreWriteError(f"Failed to mark job {job_id} processing: {e}") from e
        finally:
            session.close()

        if job is None:
            raise JobNotFoundError(job_id)
        if job.status in TERMINAL_STATUSES:
            raise AlreadyTerminalError(job_id, job.status)
        logger.debug("Job %s already processing", job_id)
        return False

    def transition_to_completed(
        self,
        job_id: str,
        duration_seconds: float,
        word_count: int,
        provider_request_id: str | None,
        cost_cents: int,
        metadata: MetadataRecord | None = None,
    ) -> bool:
        """Mark a job completed and upsert its metadata row in one transaction.

        Args:
            job_id: Job to complete.
            duration_seconds: Transcribed audio duration.
            word_count: Number of transcribed words.
            provider_request_id: Provider's request identifier, if any.
            cost_cents: Billed cost in cents.
            metadata: Metadata row to upsert (keyed by job_id).

        Returns:
            True if the job moved to completed, False if it was already
            completed (fields overwritten, last write wins).

        Raises:
            JobNotFoundError: If the job does not exist.
            AlreadyTerminalError: If the job already failed.
            StoreWriteError: If the update fails.
        """
        if metadata is not None and metadata.job_id != job_id:
            raise ValueError(f"Metadata belongs to job {metadata.job_id}, not {job_id}")

        values = {
            "status": JobStatus.COMPLETED,
            "duration_seconds": duration_seconds,
            "word_count": word_count,
            "deepgram_request_id": provider_request_id,
            "cost_cents": cost_cents,
            "error_message": None,
        }

        # A concurrent delivery may insert the metadata row first; the second
        # attempt then takes the update branch of the upsert.
        try:
            return self._complete_once(job_id, values, metadata)
        except IntegrityError:
            logger.info("Metadata row for job %s inserted concurrently; retrying", job_id)

        try:
            return self._complete_once(job_id, values, metadata)
        except IntegrityError as e:
            raise StoreWriteError(f"Failed to mark job {job_id} completed: {e}") from e

    def _complete_once(
        self, job_id: str, values: dict[str, Any], metadata: MetadataRecord | None
    ) -> bool:
        """One transaction of transition_to_completed; IntegrityError propagates."""
        session = self._session()
        try:
            result = session.execute(
                update(TranscriptionJob)
                .where(
                    TranscriptionJob.id == job_id,
                    TranscriptionJob.status.in_(_ACTIVE_STATUSES),
                )
                .values(completed_at=utc_now(), **values)
            )
            changed = result.rowcount == 1

            if not changed:
                job = self._get_row(session, job_id)
                if job is None:
                    session.rollback()
                    raise JobNotFoundError(job_id)
                if job.status != JobStatus.COMPLETED:
                    session.rollback()
                    raise AlreadyTerminalError(job_id, job.status)
                # Replay of the same terminal transition
                session.execute(
                    update(TranscriptionJob)
                    .where(
                        TranscriptionJob.id == job_id,
                        TranscriptionJob.status == JobStatus.COMPLETED,
                    )
                    .values(**values)
                )
                logger.info("Job %s already completed; completion fields overwritten", job_id)

            if metadata is not None:
                self._upsert_metadata(session, metadata)

            session.commit()
        except IntegrityError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreWriteError(f"Failed to mark job {job_id} completed: {e}") from e
        finally:
            session.close()

        return changed

    def transition_to_failed(self, job_id: str, error_message: str) -> bool:
        """Mark a job failed.

        On a job that is already terminal only error_message is overwritten;
        the status is left alone.

        Returns:
            True if the job moved to failed, False for a diagnostic overwrite.

        Raises:
            JobNotFoundError: If the job does not exist.
            StoreWriteError: If the update fails.
        """
        session = self._session()
        try:
            result = session.execute(
                update(TranscriptionJob)
                .where(
                    TranscriptionJob.id == job_id,
                    TranscriptionJob.status.in_(_ACTIVE_STATUSES),
                )
                .values(
                    status=JobStatus.FAILED,
                    completed_at=utc_now(),
                    error_message=error_message,
                )
            )
            changed = result.rowcount == 1

            if not changed:
                overwrite = session.execute(
                    update(TranscriptionJob)
                    .where(TranscriptionJob.id == job_id)
                    .values(error_message=error_message)
                )
                if overwrite.rowcount == 0:
                    session.rollback()
                    raise JobNotFoundError(job_id)

            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreWriteError(f"Failed to mark job {job_id} failed: {e}") from e
        finally:
            session.close()

        if not changed:
            logger.warning(
                "Job %s already terminal; only error_message overwritten", job_id
            )
        return changed

    # --- Stale job reclaim ---

    def claim_stale_jobs(self, ttl_seconds: int, now: datetime | None = None) -> list[JobRecord]:
        """Claim pending/processing jobs whose delivery appears lost.

        A job is stale when its last dispatch (creation or previous claim) and
        its processing start are both older than ttl_seconds. Claiming stamps
        dispatched_at with a conditional UPDATE, so concurrent sweeps claim
        each stale job at most once per TTL window. Status is left alone; the
        next delivery picks the job up from pending or processing.

        Args:
            ttl_seconds: Age after which an active job is considered stale.
            now: Reference time (defaults to utc_now()).

        Returns:
            Snapshots of the claimed jobs, oldest first.

        Raises:
            StoreWriteError: If the sweep cannot be written.
        """
        now = now or utc_now()
        cutoff = now - timedelta(seconds=ttl_seconds)
        stale = (
            TranscriptionJob.status.in_(_ACTIVE_STATUSES),
            func.coalesce(TranscriptionJob.dispatched_at, TranscriptionJob.created_at) < cutoff,
            or_(TranscriptionJob.started_at.is_(None), TranscriptionJob.started_at < cutoff),
        )

        session = self._session()
        claimed = []
        try:
            candidates = (
                session.execute(
                    select(TranscriptionJob.id)
                    .where(*stale)
                    .order_by(TranscriptionJob.created_at)
                )
                .scalars()
                .all()
            )
            for job_id in candidates:
                result = session.execute(
                    update(TranscriptionJob)
                    .where(TranscriptionJob.id == job_id, *stale)
                    .values(dispatched_at=now)
                )
                session.commit()
                if result.rowcount == 1:
                    claimed.append(JobRecord.from_row(self._get_row(session, job_id)))
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreWriteError(f"Failed to claim stale jobs: {e}") from e
        finally:
            session.close()

        if claimed:
            logger.warning("Claimed %d stale job(s) for redelivery", len(claimed))
        return claimed

    # --- Reads ---

    def get_job(self, job_id: str) -> JobRecord | None:
        """Get a job snapshot, or None if unknown."""
        session = self._session()
        try:
            row = self._get_row(session, job_id)
            return JobRecord.from_row(row) if row is not None else None
        finally:
            session.close()

    def get_metadata(self, job_id: str) -> MetadataRecord | None:
        """Get the metadata row of a completed job, or None."""
        session = self._session()
        try:
            row = session.execute(
                select(TranscriptionMetadata).where(TranscriptionMetadata.job_id == job_id)
            ).scalar_one_or_none()
            if row is None:
                return None
            return MetadataRecord(
                job_id=row.job_id,
                transcription_key=row.transcription_key,
                speakers_detected=row.speakers_detected,
                confidence_score=row.confidence_score,
                language_detected=row.language_detected,
            )
        finally:
            session.close()

    # --- Internal Helpers ---

    @staticmethod
    def _get_row(session: Session, job_id: str) -> TranscriptionJob | None:
        stmt = select(TranscriptionJob).where(TranscriptionJob.id == job_id)
        return session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def _upsert_metadata(session: Session, metadata: MetadataRecord) -> None:
        """Insert or update the single metadata row for a job (not committed)."""
        existing = session.execute(
            select(TranscriptionMetadata).where(TranscriptionMetadata.job_id == metadata.job_id)
        ).scalar_one_or_none()

        if existing is None:
            session.add(
                TranscriptionMetadata(
                    id=str(uuid.uuid4()),
                    job_id=metadata.job_id,
                    transcription_key=metadata.transcription_key,
                    speakers_detected=metadata.speakers_detected,
                    confidence_score=metadata.confidence_score,
                    language_detected=metadata.language_detected,
                )
            )
        else:
            existing.transcription_key = metadata.transcription_key
            existing.speakers_detected = metadata.speakers_detected
            existing.confidence_score = metadata.confidence_score
            existing.language_detected = metadata.language_detected
        session.flush()
