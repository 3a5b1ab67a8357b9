"""Hippo Transcribe - Transcription Worker.

Consumes delivery queue messages, calls the transcription provider, derives
metadata and cost, persists the transcript artifact and updates the Job Store.

Input: QueueMessage (job_id, audio_key, file_size, metadata, timestamp)
Output: transcriptions/{yyyy}/{mm}/{dd}/{job_id}.json + completed job row

Delivery is at-least-once. A message for a job that is already terminal is
acknowledged without touching the job. Any failure after the job is marked
processing resolves the job to failed before the exception is re-raised to
the queue, so no delivery leaves a job stuck in processing.

The artifact is written before the job is marked completed: a reader that
sees "completed" can always locate it. A crash in between leaves the job
processing with an orphaned (harmless, immutable) artifact until the stale
job sweep re-enqueues it; the redelivery rewrites the same key, which is a
pure function of date + job id.

Failpoints:
- WORKER_AFTER_PROCESSING: After marking processing, before fetching audio
- WORKER_AFTER_ARTIFACT_WRITE: After the artifact write, before completion
"""

from __future__ import annotations

import json
import logging
import math
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import ROUND_CEILING, Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any

import jsonschema

from hippo.blob_store import BlobStore
from hippo.config import (
    AUDIO_BUCKET_DIR,
    COST_RATE_CENTS_PER_MINUTE,
    ENABLE_DIARIZATION,
    LANGUAGE,
    TRANSCRIPTION_BUCKET_DIR,
    TRANSCRIPTION_MODEL,
)
from hippo.db import init_db
from hippo.errors import AlreadyTerminalError, AudioNotFoundError, HippoError
from hippo.job_store import JobStore, MetadataRecord
from hippo.models import utc_now
from hippo.provider import DeepgramProvider, TranscriptionOptions, TranscriptionProvider
from hippo.schemas import QueueMessage
from hippo.utils.failpoints import maybe_fail
from hippo.utils.keys import transcript_key

logger = logging.getLogger(__name__)

# --- Constants ---

ARTIFACT_CONTENT_TYPE = "application/json"

ARTIFACT_SCHEMA_PATH = Path(__file__).parent.parent.parent / "specs" / "transcript_artifact.schema.json"

STATUS_COMPLETED = "completed"
STATUS_SKIPPED = "skipped"


# --- Settings ---


@dataclass(frozen=True)
class WorkerSettings:
    """Static worker configuration, fixed at construction."""

    rate_cents_per_minute: float = COST_RATE_CENTS_PER_MINUTE
    enable_diarization: bool = ENABLE_DIARIZATION
    model: str = TRANSCRIPTION_MODEL
    language: str = LANGUAGE

    def transcription_options(self) -> TranscriptionOptions:
        return TranscriptionOptions(
            model=self.model, language=self.language, diarize=self.enable_diarization
        )


# --- Metadata Extraction ---


@dataclass(frozen=True)
class NormalizedMetadata:
    """Fields derived from a raw provider result."""

    duration: float = 0.0
    word_count: int = 0
    confidence: float = 0.0
    speakers_detected: int = 0
    language: str = ""
    request_id: str | None = None


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _first(value: Any) -> dict:
    if isinstance(value, list) and value:
        return _as_dict(value[0])
    return {}


def _as_number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    if not math.isfinite(value):
        return 0.0
    return float(value)


def extract_transcription_metadata(result: dict[str, Any], default_language: str) -> NormalizedMetadata:
    """Map a raw provider result to NormalizedMetadata.

    Every field is optional in the provider response; anything missing or
    malformed falls back to zero / the configured language.

    Speaker count comes from results.speaker_labels.speakers when present,
    otherwise from the distinct per-word speaker indexes of a diarized result.

    Args:
        result: Raw provider JSON response.
        default_language: Language reported when none was detected.

    Returns:
        NormalizedMetadata.
    """
    result = _as_dict(result)
    provider_meta = _as_dict(result.get("metadata"))
    results = _as_dict(result.get("results"))
    channel = _first(results.get("channels"))
    alternative = _first(channel.get("alternatives"))

    words = alternative.get("words")
    words = words if isinstance(words, list) else []

    confidence = _as_number(provider_meta.get("confidence")) or _as_number(
        alternative.get("confidence")
    )

    speaker_labels = _as_dict(results.get("speaker_labels"))
    speakers = int(_as_number(speaker_labels.get("speakers")))
    if not speakers:
        speakers = len(
            {
                word["speaker"]
                for word in words
                if isinstance(word, dict) and isinstance(word.get("speaker"), int)
            }
        )

    language = channel.get("detected_language")
    request_id = provider_meta.get("request_id")

    return NormalizedMetadata(
        duration=_as_number(provider_meta.get("duration")),
        word_count=len(words),
        confidence=confidence,
        speakers_detected=speakers,
        language=language if isinstance(language, str) and language else default_language,
        request_id=str(request_id) if request_id else None,
    )


def compute_cost_cents(duration_seconds: float, rate_cents_per_minute: float) -> int:
    """Compute billed cost in whole cents.

    cost = ceil(duration_seconds / 60 * rate), always rounding up to the next
    cent. Decimal arithmetic keeps exact products (10 min * 0.43 = 4.3) from
    picking up binary float error on the way to ceil.
    """
    if duration_seconds <= 0:
        return 0
    minutes = Decimal(str(duration_seconds)) / Decimal(60)
    cost = minutes * Decimal(str(rate_cents_per_minute))
    return int(cost.to_integral_value(rounding=ROUND_CEILING))


# --- Result Types ---


@dataclass
class ProcessResult:
    """Outcome of handling one queue message."""

    job_id: str
    status: str
    transcription_key: str | None = None
    duration_seconds: float | None = None
    word_count: int | None = None
    cost_cents: int | None = None
    processing_time_ms: int | None = None
    reason: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BatchResult:
    """Per-message outcome of a batch: acknowledged or to be retried."""

    acked: list[ProcessResult] = field(default_factory=list)
    retried: list[tuple[QueueMessage, Exception]] = field(default_factory=list)


# --- Artifact ---


@lru_cache(maxsize=1)
def _load_artifact_schema() -> dict:
    with open(ARTIFACT_SCHEMA_PATH, encoding="utf-8") as f:
        return json.load(f)


def build_artifact(
    message: QueueMessage,
    result: dict[str, Any],
    metadata: NormalizedMetadata,
    cost_cents: int,
    processing_time_ms: int,
    now: datetime,
) -> dict[str, Any]:
    """Assemble the transcript artifact document and validate it."""
    artifact = {
        "job_id": message.job_id,
        "audio_key": message.audio_key,
        "transcription_result": result,
        "metadata": {
            "duration": metadata.duration,
            "word_count": metadata.word_count,
            "confidence": metadata.confidence,
            "speakers_detected": metadata.speakers_detected,
            "language": metadata.language,
            "cost_cents": cost_cents,
        },
        "processing_time_ms": processing_time_ms,
        "timestamp": now.isoformat(),
    }
    jsonschema.validate(artifact, _load_artifact_schema())
    return artifact


# --- Worker ---


def _error_message(error: Exception) -> str:
    """Message recorded on a failed job."""
    if isinstance(error, HippoError):
        return error.message
    return str(error) or type(error).__name__


class TranscriptionWorker:
    """Executes the per-message transcription protocol."""

    def __init__(
        self,
        job_store: JobStore,
        audio_store: BlobStore,
        transcript_store: BlobStore,
        provider: TranscriptionProvider,
        settings: WorkerSettings | None = None,
    ):
        self.job_store = job_store
        self.audio_store = audio_store
        self.transcript_store = transcript_store
        self.provider = provider
        self.settings = settings or WorkerSettings()
        self._options = self.settings.transcription_options()

    def process_message(self, message: QueueMessage) -> ProcessResult:
        """Handle one delivery of a queue message.

        Args:
            message: The delivered message.

        Returns:
            ProcessResult with status "completed", or "skipped" when the job
            was already terminal (redelivery).

        Raises:
            JobNotFoundError: If the message references an unknown job.
            StoreWriteError: If the Job Store cannot be updated.
            Exception: Whatever failed in steps 2-7; the job is marked
                failed before it propagates.
        """
        job_id = message.job_id

        # 1. Mark processing (terminal job: idempotent replay)
        try:
            self.job_store.transition_to_processing(job_id)
        except AlreadyTerminalError as e:
            logger.info("Skipping redelivered message for job %s (status=%s)", job_id, e.status)
            return ProcessResult(job_id=job_id, status=STATUS_SKIPPED, reason=e.status)

        maybe_fail("WORKER_AFTER_PROCESSING")

        try:
            return self._transcribe(message)
        except Exception as e:
            logger.exception("Error processing transcription job %s", job_id)
            try:
                self.job_store.transition_to_failed(job_id, _error_message(e))
            except Exception:
                logger.exception("Could not record failure for job %s", job_id)
            raise

    def _transcribe(self, message: QueueMessage) -> ProcessResult:
        job_id = message.job_id

        # 2. Fetch audio
        audio = self.audio_store.get(message.audio_key)
        if audio is None:
            raise AudioNotFoundError(message.audio_key)

        # 3. Provider call
        started = time.monotonic()
        result = self.provider.transcribe(audio.body, audio.content_type, self._options)
        processing_time_ms = int((time.monotonic() - started) * 1000)

        # 4-5. Derived metadata and cost
        metadata = extract_transcription_metadata(result, self.settings.language)
        cost_cents = compute_cost_cents(metadata.duration, self.settings.rate_cents_per_minute)

        # 6. Artifact before completion
        now = utc_now()
        key = transcript_key(job_id, now)
        artifact = build_artifact(message, result, metadata, cost_cents, processing_time_ms, now)
        self.transcript_store.put_bytes(
            key,
            json.dumps(artifact).encode("utf-8"),
            content_type=ARTIFACT_CONTENT_TYPE,
            custom_metadata={
                "job-id": job_id,
                "audio-key": message.audio_key,
                "duration-seconds": str(metadata.duration),
                "word-count": str(metadata.word_count),
            },
        )

        maybe_fail("WORKER_AFTER_ARTIFACT_WRITE")

        # 7. Completion + metadata row, one transaction
        self.job_store.transition_to_completed(
            job_id,
            duration_seconds=metadata.duration,
            word_count=metadata.word_count,
            provider_request_id=metadata.request_id,
            cost_cents=cost_cents,
            metadata=MetadataRecord(
                job_id=job_id,
                transcription_key=key,
                speakers_detected=metadata.speakers_detected,
                confidence_score=metadata.confidence,
                language_detected=metadata.language,
            ),
        )

        logger.info(
            "Transcription completed for job %s: %d words, %.1fs, cost: $%.2f",
            job_id,
            metadata.word_count,
            metadata.duration,
            cost_cents / 100,
        )

        return ProcessResult(
            job_id=job_id,
            status=STATUS_COMPLETED,
            transcription_key=key,
            duration_seconds=metadata.duration,
            word_count=metadata.word_count,
            cost_cents=cost_cents,
            processing_time_ms=processing_time_ms,
        )

    def process_batch(self, messages: list[QueueMessage]) -> BatchResult:
        """Handle a batch of messages sequentially and independently.

        A message that raises is put on the retry list; the rest of the
        batch still runs.
        """
        logger.info("Processing batch of %d transcription jobs", len(messages))
        batch = BatchResult()
        for message in messages:
            try:
                batch.acked.append(self.process_message(message))
            except Exception as e:
                logger.warning("Job %s will be retried: %s", message.job_id, e)
                batch.retried.append((message, e))
        return batch


# --- Standalone Execution ---


_default_worker: TranscriptionWorker | None = None


def build_default_worker() -> TranscriptionWorker:
    """Build a worker from process configuration."""
    _, SessionFactory = init_db()
    return TranscriptionWorker(
        job_store=JobStore(SessionFactory),
        audio_store=BlobStore(AUDIO_BUCKET_DIR, name="audio"),
        transcript_store=BlobStore(TRANSCRIPTION_BUCKET_DIR, name="transcriptions"),
        provider=DeepgramProvider(),
        settings=WorkerSettings(),
    )


def get_default_worker() -> TranscriptionWorker:
    """Process-wide worker, built once on first use."""
    global _default_worker
    if _default_worker is None:
        _default_worker = build_default_worker()
    return _default_worker


if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) != 2:
        print(f"Usage: {sys.argv[0]} <queue_message.json>")
        sys.exit(1)

    with open(sys.argv[1], encoding="utf-8") as f:
        msg = QueueMessage.model_validate(json.load(f))

    outcome = get_default_worker().process_message(msg)
    print(f"{outcome.status}: {outcome.transcription_key}")
    sys.exit(0)
