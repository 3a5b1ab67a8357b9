"""Hippo Transcribe - Error taxonomy.

Every error carries a stable error_code so API handlers can map it to a
structured response without inspecting exception types.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    """Error codes shared by the worker, the API and the polling client."""

    NOT_FOUND = "NOT_FOUND"
    ALREADY_TERMINAL = "ALREADY_TERMINAL"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    AUDIO_NOT_FOUND = "AUDIO_NOT_FOUND"
    STORE_WRITE_FAILURE = "STORE_WRITE_FAILURE"
    TIMEOUT = "TIMEOUT"
    ARTIFACT_MISSING = "ARTIFACT_MISSING"
    IN_PROGRESS = "IN_PROGRESS"
    TRANSCRIPTION_FAILED = "TRANSCRIPTION_FAILED"
    REQUEST_FAILED = "REQUEST_FAILED"
    INVALID_REQUEST = "INVALID_REQUEST"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class HippoError(Exception):
    """Base exception for pipeline errors."""

    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        self.message = message
        super().__init__(f"{error_code}: {message}")


class JobNotFoundError(HippoError):
    """No job exists for the given identifier."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(ErrorCode.NOT_FOUND, f"Job not found: {job_id}")


class AlreadyTerminalError(HippoError):
    """A state transition was attempted on a completed or failed job."""

    def __init__(self, job_id: str, status: str):
        self.job_id = job_id
        self.status = status
        super().__init__(
            ErrorCode.ALREADY_TERMINAL, f"Job {job_id} is already terminal (status={status})"
        )


class ProviderError(HippoError):
    """The transcription provider call did not succeed."""

    def __init__(self, status_code: int | None, body: str):
        self.status_code = status_code
        self.body = body
        if status_code is None:
            message = f"Provider request failed: {body}"
        else:
            message = f"Deepgram API error: {status_code} - {body}"
        super().__init__(ErrorCode.PROVIDER_ERROR, message)


class AudioNotFoundError(HippoError):
    """The source audio object is absent from the audio bucket."""

    def __init__(self, audio_key: str):
        self.audio_key = audio_key
        super().__init__(ErrorCode.AUDIO_NOT_FOUND, f"Audio file not found: {audio_key}")


class StoreWriteError(HippoError):
    """The Blob Store or Job Store could not be written (or read)."""

    def __init__(self, reason: str):
        super().__init__(ErrorCode.STORE_WRITE_FAILURE, reason)


class ArtifactMissingError(HippoError):
    """Metadata row exists but the transcript artifact cannot be located."""

    def __init__(self, job_id: str, reason: str):
        self.job_id = job_id
        super().__init__(ErrorCode.ARTIFACT_MISSING, f"Transcript for job {job_id}: {reason}")


class JobInProgressError(HippoError):
    """The job exists but has not completed yet."""

    def __init__(self, job_id: str, status: str):
        self.job_id = job_id
        self.status = status
        super().__init__(ErrorCode.IN_PROGRESS, "Transcription not ready")


class PollTimeoutError(HippoError):
    """Client-side polling exhausted its attempt budget."""

    def __init__(self, job_id: str, attempts: int):
        self.job_id = job_id
        self.attempts = attempts
        super().__init__(
            ErrorCode.TIMEOUT, f"Transcription timeout for job {job_id} after {attempts} polls"
        )


class TranscriptionFailedError(HippoError):
    """The job reached the failed state."""

    def __init__(self, job_id: str, error_message: str | None):
        self.job_id = job_id
        super().__init__(ErrorCode.TRANSCRIPTION_FAILED, error_message or "Transcription failed")


class ClientRequestError(HippoError):
    """An HTTP request made by the polling client failed."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(ErrorCode.REQUEST_FAILED, message)
