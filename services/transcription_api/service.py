"""Hippo Transcribe - Job creation.

Turns an audio object that landed in the audio bucket into a pending
transcription job plus a queued delivery. Used both by the upload event task
(hippo.huey_app.audio_uploaded_task) and by the manual POST /api/transcribe
endpoint.

Also hosts the stale job sweep that re-enqueues jobs whose delivery was lost
when a consumer died after dequeuing them.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime

from hippo.blob_store import BlobStore
from hippo.errors import AudioNotFoundError, ErrorCode, HippoError
from hippo.job_store import JobStore
from hippo.schemas import QueueMessage

logger = logging.getLogger(__name__)


# --- Result Types ---


@dataclass
class TranscribeResult:
    """Outcome of a job-creation request."""

    success: bool
    audio_key: str
    job_id: str | None = None
    error_code: str | None = None
    error: str | None = None

    def as_dict(self) -> dict:
        return asdict(self)


# --- Job Creation ---


def create_transcription_job(
    job_store: JobStore,
    audio_store: BlobStore,
    audio_key: str,
    enqueue: Callable[[QueueMessage], None],
) -> TranscribeResult:
    """Create a pending job for an audio object and queue its transcription.

    Steps:
    1. Head the audio object (missing -> failure, no job row)
    2. Insert the job (pending, file size from the object)
    3. Enqueue a QueueMessage carrying the object's custom metadata

    If the enqueue fails the job would never be delivered, so it is marked
    failed and the result reports the failure.

    Args:
        job_store: Job Store to create the job in.
        audio_store: Audio bucket.
        audio_key: Key of the audio object.
        enqueue: Delivery queue producer.

    Returns:
        TranscribeResult (never raises for expected faults).
    """
    try:
        head = audio_store.head(audio_key)
    except ValueError as e:
        return TranscribeResult(
            success=False, audio_key=audio_key, error_code=ErrorCode.AUDIO_NOT_FOUND, error=str(e)
        )

    if head is None:
        error = AudioNotFoundError(audio_key)
        logger.warning("Cannot create job: %s", error.message)
        return TranscribeResult(
            success=False, audio_key=audio_key, error_code=error.error_code, error=error.message
        )

    try:
        job_id = job_store.create_job(audio_key, file_size=head.size)
    except HippoError as e:
        logger.error("Job creation failed for %s: %s", audio_key, e.message)
        return TranscribeResult(
            success=False, audio_key=audio_key, error_code=e.error_code, error=e.message
        )

    message = QueueMessage(
        job_id=job_id,
        audio_key=audio_key,
        file_size=head.size,
        metadata=head.custom_metadata,
    )

    try:
        enqueue(message)
    except Exception as e:
        logger.exception("Failed to enqueue job %s", job_id)
        reason = f"Failed to enqueue transcription: {e}"
        try:
            job_store.transition_to_failed(job_id, reason)
        except HippoError:
            logger.exception("Could not mark job %s failed after enqueue error", job_id)
        return TranscribeResult(
            success=False,
            audio_key=audio_key,
            job_id=job_id,
            error_code=ErrorCode.INTERNAL_ERROR,
            error=reason,
        )

    logger.info("Job %s queued for %s", job_id, audio_key)
    return TranscribeResult(success=True, audio_key=audio_key, job_id=job_id)


# --- Stale Job Reclaim ---


def reclaim_stale_jobs(
    job_store: JobStore,
    audio_store: BlobStore,
    enqueue: Callable[[QueueMessage], None],
    ttl_seconds: int,
    now: datetime | None = None,
) -> list[str]:
    """Re-enqueue jobs whose delivery was lost.

    The delivery queue drops a task once a consumer dequeues it, so a consumer
    that dies mid-task leaves its job pending or processing with nothing left
    to deliver it. This sweep claims such jobs (see JobStore.claim_stale_jobs)
    and enqueues a QueueMessage rebuilt from the job row and the audio
    object's custom metadata. The worker accepts a job that is still
    processing, so the redelivery completes it or resolves it to failed.

    Args:
        job_store: Job Store to sweep.
        audio_store: Audio bucket (custom metadata for the message).
        enqueue: Delivery queue producer.
        ttl_seconds: Age after which an active job is considered stale.
        now: Reference time (defaults to the current time).

    Returns:
        Job IDs that were re-enqueued.
    """
    reclaimed = []
    for job in job_store.claim_stale_jobs(ttl_seconds, now=now):
        head = audio_store.head(job.audio_key)
        message = QueueMessage(
            job_id=job.id,
            audio_key=job.audio_key,
            file_size=job.file_size,
            metadata=head.custom_metadata if head is not None else {},
        )
        try:
            enqueue(message)
        except Exception:
            # Claimed but not sent: the next sweep after the TTL tries again
            logger.exception("Failed to re-enqueue stale job %s", job.id)
            continue
        logger.info("Re-enqueued stale job %s (status=%s)", job.id, job.status)
        reclaimed.append(job.id)
    return reclaimed


_default_stores: tuple[JobStore, BlobStore] | None = None


def _get_default_stores() -> tuple[JobStore, BlobStore]:
    """Process-wide Job Store and audio bucket, built once on first use."""
    global _default_stores
    if _default_stores is None:
        from hippo.config import AUDIO_BUCKET_DIR
        from hippo.db import init_db

        _, SessionFactory = init_db()
        _default_stores = (JobStore(SessionFactory), BlobStore(AUDIO_BUCKET_DIR, name="audio"))
    return _default_stores


def create_default_transcription_job(audio_key: str) -> TranscribeResult:
    """Create a job using process configuration (upload event entry point)."""
    from hippo.huey_app import enqueue_transcription

    job_store, audio_store = _get_default_stores()
    return create_transcription_job(
        job_store=job_store,
        audio_store=audio_store,
        audio_key=audio_key,
        enqueue=enqueue_transcription,
    )


def reclaim_default_stale_jobs() -> list[str]:
    """Run the stale job sweep using process configuration."""
    from hippo.config import STALE_JOB_TTL_SECONDS
    from hippo.huey_app import enqueue_transcription

    job_store, audio_store = _get_default_stores()
    return reclaim_stale_jobs(
        job_store=job_store,
        audio_store=audio_store,
        enqueue=enqueue_transcription,
        ttl_seconds=STALE_JOB_TTL_SECONDS,
    )
