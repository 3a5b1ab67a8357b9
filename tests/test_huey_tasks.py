"""Tests for the delivery queue wiring (hippo/huey_app.py)."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from conftest import FakeProvider
from huey.storage import MemoryStorage

from hippo import huey_app
from hippo.errors import ProviderError
from hippo.models import JobStatus, utc_now
from hippo.schemas import QueueMessage
from services.transcription_api.service import TranscribeResult, reclaim_stale_jobs
from services.transcription_worker.run import TranscriptionWorker, WorkerSettings

AUDIO_KEY = "audio/2024/01/15/meeting.mp3"


@pytest.fixture
def worker_setup(job_store, stores):
    audio_store, transcript_store = stores
    audio_store.put_bytes(AUDIO_KEY, b"audio", content_type="audio/mpeg")
    job_id = job_store.create_job(AUDIO_KEY)

    def build(provider=None):
        return TranscriptionWorker(
            job_store=job_store,
            audio_store=audio_store,
            transcript_store=transcript_store,
            provider=provider or FakeProvider(),
            settings=WorkerSettings(),
        )

    return job_store, job_id, build


class TestEnqueue:
    """Producers hand JSON payloads to huey tasks."""

    def test_enqueue_transcription_serializes_message(self):
        """The QueueMessage is sent as a JSON-compatible dict."""
        message = QueueMessage(job_id="job-1", audio_key=AUDIO_KEY, file_size=5)

        with patch("hippo.huey_app.transcription_task") as mock_task:
            huey_app.enqueue_transcription(message)

        payload = mock_task.call_args.args[0]
        assert payload["job_id"] == "job-1"
        assert payload["audio_key"] == AUDIO_KEY
        assert isinstance(payload["timestamp"], str)

    def test_enqueue_audio_uploaded(self):
        """Upload events enqueue job creation by key."""
        with patch("hippo.huey_app.audio_uploaded_task") as mock_task:
            huey_app.enqueue_audio_uploaded(AUDIO_KEY)

        mock_task.assert_called_once_with(AUDIO_KEY)

    def test_task_retry_policy(self):
        """Transcription deliveries are retried by huey."""
        assert huey_app.transcription_task.retries == huey_app.MAX_DELIVERY_RETRIES


class TestTranscriptionTask:
    """The task body delegates to the worker."""

    def test_task_processes_message(self, worker_setup):
        """A delivered payload completes the job."""
        job_store, job_id, build = worker_setup
        payload = QueueMessage(job_id=job_id, audio_key=AUDIO_KEY).model_dump(mode="json")

        with patch(
            "services.transcription_worker.run.get_default_worker", return_value=build()
        ):
            result = huey_app.transcription_task.call_local(payload)

        assert result["status"] == "completed"
        assert job_store.get_job(job_id).status == JobStatus.COMPLETED

    def test_task_reraises_after_failing_job(self, worker_setup):
        """Worker errors propagate so huey can retry; the job is already failed."""
        job_store, job_id, build = worker_setup
        payload = QueueMessage(job_id=job_id, audio_key=AUDIO_KEY).model_dump(mode="json")
        worker = build(FakeProvider(error=ProviderError(503, "unavailable")))

        with patch("services.transcription_worker.run.get_default_worker", return_value=worker):
            with pytest.raises(ProviderError):
                huey_app.transcription_task.call_local(payload)

        assert job_store.get_job(job_id).status == JobStatus.FAILED

    def test_audio_uploaded_task(self):
        """Upload events create a job through the job-creation service."""
        expected = TranscribeResult(success=True, audio_key=AUDIO_KEY, job_id="job-1")

        with patch(
            "services.transcription_api.service.create_default_transcription_job",
            return_value=expected,
        ) as mock_create:
            result = huey_app.audio_uploaded_task.call_local(AUDIO_KEY)

        mock_create.assert_called_once_with(AUDIO_KEY)
        assert result["job_id"] == "job-1"


@pytest.fixture
def memory_queue(monkeypatch):
    """Swap the huey storage for an in-memory one (tasks stay registered)."""
    monkeypatch.setattr(huey_app.huey, "storage", MemoryStorage(huey_app.huey.name))
    return huey_app.huey


class TestLostDelivery:
    """A consumer that dies after dequeuing loses the message; the sweep recovers it."""

    def test_sweep_redelivers_task_lost_after_dequeue(self, worker_setup, stores, memory_queue):
        """Dequeue without running, sweep, then the redelivered task completes the job."""
        job_store, job_id, build = worker_setup
        audio_store, _ = stores
        huey_app.enqueue_transcription(QueueMessage(job_id=job_id, audio_key=AUDIO_KEY))

        # Consumer takes the task, marks the job processing, then dies
        assert memory_queue.dequeue() is not None
        job_store.transition_to_processing(job_id)
        assert memory_queue.pending_count() == 0

        reclaimed = reclaim_stale_jobs(
            job_store,
            audio_store,
            huey_app.enqueue_transcription,
            ttl_seconds=60,
            now=utc_now() + timedelta(minutes=5),
        )

        assert reclaimed == [job_id]
        assert memory_queue.pending_count() == 1

        task = memory_queue.dequeue()
        with patch(
            "services.transcription_worker.run.get_default_worker", return_value=build()
        ):
            memory_queue.execute(task)

        job = job_store.get_job(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.cost_cents == 1

    def test_sweep_ignores_fresh_jobs(self, worker_setup, stores, memory_queue):
        """A job still inside its TTL is not redelivered."""
        job_store, job_id, _ = worker_setup
        audio_store, _ = stores

        reclaimed = reclaim_stale_jobs(
            job_store, audio_store, huey_app.enqueue_transcription, ttl_seconds=3600
        )

        assert reclaimed == []
        assert memory_queue.pending_count() == 0

    def test_enqueue_failure_is_logged_and_skipped(self, worker_setup, stores):
        """A failed re-enqueue does not abort the sweep."""
        job_store, job_id, _ = worker_setup
        audio_store, _ = stores

        def broken(message):
            raise RuntimeError("queue unavailable")

        reclaimed = reclaim_stale_jobs(
            job_store, audio_store, broken, ttl_seconds=60, now=utc_now() + timedelta(minutes=5)
        )

        assert reclaimed == []
        assert job_store.get_job(job_id).status == JobStatus.PENDING

    def test_periodic_sweep_task(self):
        """The periodic task runs the default sweep."""
        with patch(
            "services.transcription_api.service.reclaim_default_stale_jobs",
            return_value=["job-1"],
        ) as mock_sweep:
            result = huey_app.stale_job_sweep_task.call_local()

        mock_sweep.assert_called_once_with()
        assert result == ["job-1"]
