"""Shared pytest fixtures for Hippo Transcribe tests.

This module contains common fixtures used across multiple test files,
reducing duplication and improving test maintainability.
"""

import copy
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from hippo.blob_store import BlobStore
from hippo.db import init_db
from hippo.job_store import JobStore

# Provider response used throughout the worker and API tests:
# 42.5 s of audio, 10 words, confidence 0.97, no speaker labels.
SAMPLE_WORDS = [
    {"word": w, "start": i * 0.5, "end": i * 0.5 + 0.4, "confidence": 0.97}
    for i, w in enumerate(
        ["hello", "and", "welcome", "to", "the", "weekly", "planning", "meeting", "everyone", "today"]
    )
]

SAMPLE_PROVIDER_RESULT = {
    "metadata": {
        "request_id": "req-0001",
        "duration": 42.5,
        "channels": 1,
    },
    "results": {
        "channels": [
            {
                "alternatives": [
                    {
                        "transcript": "Hello and welcome to the weekly planning meeting everyone today.",
                        "confidence": 0.97,
                        "words": SAMPLE_WORDS,
                    }
                ]
            }
        ]
    },
}


def sample_provider_result() -> dict:
    """Fresh deep copy of the sample provider response."""
    return copy.deepcopy(SAMPLE_PROVIDER_RESULT)


class FakeProvider:
    """In-memory TranscriptionProvider returning a canned result (or raising)."""

    def __init__(self, result: dict | None = None, error: Exception | None = None):
        self.result = result if result is not None else sample_provider_result()
        self.error = error
        self.calls = []

    def transcribe(self, audio, content_type, options):
        self.calls.append((audio, content_type, options))
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.result)


@pytest.fixture
def temp_db():
    """Create a temporary database for testing.

    Yields:
        tuple: (db_path, engine, SessionFactory)
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        engine, SessionFactory = init_db(db_path)
        yield db_path, engine, SessionFactory
        engine.dispose()


@pytest.fixture
def job_store(temp_db):
    """JobStore over the temporary database."""
    _, _, SessionFactory = temp_db
    return JobStore(SessionFactory)


@pytest.fixture
def stores():
    """Audio and transcription buckets in a temporary directory.

    Yields:
        tuple: (audio_store, transcript_store)
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield (
            BlobStore(Path(tmpdir) / "audio", name="audio"),
            BlobStore(Path(tmpdir) / "transcriptions", name="transcriptions"),
        )


@pytest.fixture
def enqueued():
    """Collects QueueMessages instead of sending them to huey."""
    return []


@pytest.fixture
def client(job_store, stores, enqueued):
    """Create a FastAPI test client over temporary stores.

    Yields:
        tuple: (test_client, job_store, audio_store, transcript_store)
    """
    from services.transcription_api import main

    audio_store, transcript_store = stores
    main.configure(job_store, audio_store, transcript_store, enqueued.append)

    with TestClient(main.app) as test_client:
        yield test_client, job_store, audio_store, transcript_store

    main.reset()


@pytest.fixture
def sample_audio_file():
    """Create a small fake MP3 file.

    Yields:
        Path: Path to the temporary file.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "meeting.mp3"
        path.write_bytes(b"ID3 fake mp3 content " * 200)
        yield path
