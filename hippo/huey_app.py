"""Hippo Transcribe - Huey delivery queue.

Huey with a SQLite backend carries job payloads between ingestion and
processing. A task that raises is retried up to MAX_DELIVERY_RETRIES times.
Huey removes a task from storage when a consumer dequeues it, so a consumer
killed mid-task loses the message; stale_job_sweep_task (every
RECLAIM_INTERVAL_MINUTES, and once at consumer startup) re-enqueues jobs left
pending or processing longer than STALE_JOB_TTL_SECONDS. Together this gives
at-least-once delivery. Consumers must therefore be idempotent per job id,
which the Transcription Worker guarantees through the Job Store's keyed
transitions.

How to run:
1. Start the API:
   uvicorn services.transcription_api.main:app

2. Start the Huey consumer (processes queued tasks):
   huey_consumer.py hippo.huey_app.huey -w 4

3. Start the uploader:
   python -m services.uploader.run
"""

from __future__ import annotations

import logging
from pathlib import Path

from huey import SqliteHuey, crontab

from hippo.config import (
    HUEY_DB_PATH,
    MAX_DELIVERY_RETRIES,
    QUEUE_DIR,
    RECLAIM_INTERVAL_MINUTES,
    RETRY_DELAY_SECONDS,
)
from hippo.schemas import QueueMessage

logger = logging.getLogger(__name__)


def _ensure_queue_dir() -> None:
    """Ensure the queue directory exists."""
    Path(QUEUE_DIR).mkdir(parents=True, exist_ok=True)


_ensure_queue_dir()

huey = SqliteHuey(
    name="hippo_transcribe",
    filename=str(HUEY_DB_PATH),
    immediate=False,  # Tasks queued for consumer processing
)


@huey.task(retries=MAX_DELIVERY_RETRIES, retry_delay=RETRY_DELAY_SECONDS)
def transcription_task(payload: dict) -> dict:
    """Huey task that delivers one QueueMessage to the Transcription Worker.

    Re-raises worker failures so huey redelivers; by then the worker has
    already resolved the job to a terminal state.

    Args:
        payload: QueueMessage as a JSON-compatible dict.

    Returns:
        Dict with the processing result (for logging/debugging).
    """
    # Import here to avoid circular imports
    from services.transcription_worker.run import get_default_worker

    message = QueueMessage.model_validate(payload)
    logger.info("Transcription task started for job_id=%s", message.job_id)
    result = get_default_worker().process_message(message)
    logger.info("Transcription task finished for job_id=%s: %s", message.job_id, result.status)
    return result.as_dict()


@huey.task()
def audio_uploaded_task(audio_key: str) -> dict:
    """Huey task fired when a new audio object lands in the audio bucket.

    Creates the job record and queues the transcription.

    Args:
        audio_key: Key of the uploaded audio object.

    Returns:
        Dict describing the created job (or the failure).
    """
    from services.transcription_api.service import create_default_transcription_job

    logger.info("Audio upload event for %s", audio_key)
    return create_default_transcription_job(audio_key).as_dict()


@huey.periodic_task(crontab(minute=f"*/{RECLAIM_INTERVAL_MINUTES}"))
def stale_job_sweep_task() -> list[str]:
    """Periodic task that re-enqueues jobs whose delivery was lost.

    Returns:
        IDs of the re-enqueued jobs.
    """
    from services.transcription_api.service import reclaim_default_stale_jobs

    reclaimed = reclaim_default_stale_jobs()
    if reclaimed:
        logger.info("Stale job sweep re-enqueued %d job(s)", len(reclaimed))
    return reclaimed


@huey.on_startup()
def sweep_on_consumer_startup() -> None:
    """Queue one sweep when a consumer starts (recovers its own crashed tasks)."""
    stale_job_sweep_task()


def enqueue_transcription(message: QueueMessage) -> None:
    """Enqueue a transcription delivery.

    Non-blocking: the payload is persisted in SQLite and processed when a
    consumer is running.

    Args:
        message: The queue message to deliver.
    """
    logger.info("Enqueueing transcription: job_id=%s, audio_key=%s", message.job_id, message.audio_key)
    transcription_task(message.model_dump(mode="json"))


def enqueue_audio_uploaded(audio_key: str) -> None:
    """Enqueue job creation for a freshly uploaded audio object."""
    logger.info("Enqueueing upload event for audio_key=%s", audio_key)
    audio_uploaded_task(audio_key)
