"""Tests for the Transcription Worker protocol (services/transcription_worker/run.py).

Covers:
- Happy path: artifact written, job completed with metadata and cost
- Idempotent replay: redelivery of a terminal job is acknowledged untouched
- Failures: missing audio, provider errors, store errors -> job failed, re-raised
- Batch handling: per-message ack/retry
"""

import json

import jsonschema
import pytest
from conftest import FakeProvider, sample_provider_result

from hippo.errors import AudioNotFoundError, JobNotFoundError, ProviderError, StoreWriteError
from hippo.models import JobStatus
from hippo.schemas import QueueMessage
from services.transcription_worker.run import (
    ARTIFACT_SCHEMA_PATH,
    TranscriptionWorker,
    WorkerSettings,
)

AUDIO_KEY = "audio/2024/01/15/meeting.mp3"


@pytest.fixture
def pipeline(job_store, stores):
    """A pending job with its audio in the bucket.

    Returns:
        tuple: (job_store, audio_store, transcript_store, message)
    """
    audio_store, transcript_store = stores
    audio_store.put_bytes(AUDIO_KEY, b"fake audio", content_type="audio/mpeg")
    job_id = job_store.create_job(AUDIO_KEY, file_size=10)
    message = QueueMessage(job_id=job_id, audio_key=AUDIO_KEY, file_size=10)
    return job_store, audio_store, transcript_store, message


def make_worker(pipeline, provider=None, settings=None):
    job_store, audio_store, transcript_store, _ = pipeline
    return TranscriptionWorker(
        job_store=job_store,
        audio_store=audio_store,
        transcript_store=transcript_store,
        provider=provider or FakeProvider(),
        settings=settings or WorkerSettings(rate_cents_per_minute=0.43, language="en"),
    )


class TestHappyPath:
    """A single successful delivery."""

    def test_completes_job_with_metadata(self, pipeline):
        """Job row, metadata row and artifact agree after processing."""
        job_store, _, transcript_store, message = pipeline
        worker = make_worker(pipeline)

        result = worker.process_message(message)

        assert result.status == "completed"
        assert result.word_count == 10
        assert result.duration_seconds == 42.5
        assert result.cost_cents == 1

        job = job_store.get_job(message.job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.duration_seconds == 42.5
        assert job.word_count == 10
        assert job.cost_cents == 1
        assert job.deepgram_request_id == "req-0001"
        assert job.started_at is not None
        assert job.completed_at is not None

        meta = job_store.get_metadata(message.job_id)
        assert meta.transcription_key == result.transcription_key
        assert meta.speakers_detected == 0
        assert meta.confidence_score == 0.97
        assert meta.language_detected == "en"

    def test_artifact_contents(self, pipeline):
        """The artifact holds the raw result and validates against its schema."""
        _, _, transcript_store, message = pipeline
        result = make_worker(pipeline).process_message(message)

        assert result.transcription_key.startswith("transcriptions/")
        assert result.transcription_key.endswith(f"/{message.job_id}.json")

        obj = transcript_store.get(result.transcription_key)
        assert obj.content_type == "application/json"
        assert obj.custom_metadata["job-id"] == message.job_id
        assert obj.custom_metadata["audio-key"] == AUDIO_KEY
        assert obj.custom_metadata["word-count"] == "10"

        artifact = obj.json()
        assert artifact["job_id"] == message.job_id
        assert artifact["audio_key"] == AUDIO_KEY
        assert artifact["transcription_result"] == sample_provider_result()
        assert artifact["metadata"]["cost_cents"] == 1
        schema = json.loads(ARTIFACT_SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(artifact, schema)

    def test_provider_receives_audio_and_options(self, pipeline):
        """The provider gets the stored bytes, content type and configured options."""
        provider = FakeProvider()
        settings = WorkerSettings(enable_diarization=True, model="nova-2", language="en")
        make_worker(pipeline, provider=provider, settings=settings).process_message(pipeline[3])

        audio, content_type, options = provider.calls[0]
        assert audio == b"fake audio"
        assert content_type == "audio/mpeg"
        assert options.to_params()["diarize"] == "true"

    def test_processing_job_is_picked_up(self, pipeline):
        """A delivery for a job left processing by a crash completes it."""
        job_store, _, _, message = pipeline
        job_store.transition_to_processing(message.job_id)

        result = make_worker(pipeline).process_message(message)

        assert result.status == "completed"
        assert job_store.get_job(message.job_id).status == JobStatus.COMPLETED


class TestIdempotentReplay:
    """Redelivery of messages for terminal jobs."""

    def test_replay_of_completed_job_is_noop(self, pipeline):
        """A second delivery neither calls the provider nor changes the job."""
        job_store, _, _, message = pipeline
        provider = FakeProvider()
        worker = make_worker(pipeline, provider=provider)

        worker.process_message(message)
        before = job_store.get_job(message.job_id)

        result = worker.process_message(message)

        assert result.status == "skipped"
        assert len(provider.calls) == 1
        assert job_store.get_job(message.job_id) == before

    def test_replay_of_failed_job_is_noop(self, pipeline):
        """A failed job stays failed on redelivery."""
        job_store, _, _, message = pipeline
        job_store.transition_to_failed(message.job_id, "earlier failure")
        provider = FakeProvider()

        result = make_worker(pipeline, provider=provider).process_message(message)

        assert result.status == "skipped"
        assert provider.calls == []
        job = job_store.get_job(message.job_id)
        assert job.status == JobStatus.FAILED
        assert job.error_message == "earlier failure"


class TestFailures:
    """Every failure after processing resolves the job to failed."""

    def test_audio_missing(self, pipeline):
        """Missing audio fails the job with a descriptive message."""
        job_store, audio_store, _, _ = pipeline
        job_id = job_store.create_job("audio/2024/01/15/gone.mp3")
        message = QueueMessage(job_id=job_id, audio_key="audio/2024/01/15/gone.mp3")

        with pytest.raises(AudioNotFoundError):
            make_worker(pipeline).process_message(message)

        job = job_store.get_job(job_id)
        assert job.status == JobStatus.FAILED
        assert job.error_message == "Audio file not found: audio/2024/01/15/gone.mp3"

    def test_provider_error(self, pipeline):
        """A provider failure is recorded and re-raised; no artifact is written."""
        job_store, _, transcript_store, message = pipeline
        provider = FakeProvider(error=ProviderError(500, "Internal Server Error"))

        with pytest.raises(ProviderError):
            make_worker(pipeline, provider=provider).process_message(message)

        job = job_store.get_job(message.job_id)
        assert job.status == JobStatus.FAILED
        assert job.error_message == "Deepgram API error: 500 - Internal Server Error"
        assert job.completed_at is not None
        assert job_store.get_metadata(message.job_id) is None
        assert not transcript_store.root.exists() or list(transcript_store.root.rglob("*.json")) == []

    def test_artifact_write_failure(self, pipeline):
        """A transcript store failure fails the job before completion."""
        job_store, _, transcript_store, message = pipeline

        def broken_put(*args, **kwargs):
            raise StoreWriteError("transcriptions: disk full")

        transcript_store.put_bytes = broken_put

        with pytest.raises(StoreWriteError):
            make_worker(pipeline).process_message(message)

        job = job_store.get_job(message.job_id)
        assert job.status == JobStatus.FAILED
        assert job.error_message == "transcriptions: disk full"

    def test_unknown_job_raises(self, pipeline):
        """A message for a job that does not exist is not acknowledged."""
        message = QueueMessage(job_id="missing", audio_key=AUDIO_KEY)
        with pytest.raises(JobNotFoundError):
            make_worker(pipeline).process_message(message)


class TestBatch:
    """process_batch acks and retries messages independently."""

    def test_mixed_batch(self, pipeline):
        """A failing message does not stop the rest of the batch."""
        job_store, _, _, good = pipeline
        bad_id = job_store.create_job("audio/2024/01/15/gone.mp3")
        bad = QueueMessage(job_id=bad_id, audio_key="audio/2024/01/15/gone.mp3")

        batch = make_worker(pipeline).process_batch([bad, good])

        assert [r.job_id for r in batch.acked] == [good.job_id]
        assert [m.job_id for m, _ in batch.retried] == [bad_id]
        assert isinstance(batch.retried[0][1], AudioNotFoundError)
        assert job_store.get_job(good.job_id).status == JobStatus.COMPLETED
        assert job_store.get_job(bad_id).status == JobStatus.FAILED
