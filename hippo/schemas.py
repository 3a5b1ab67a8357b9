"""Hippo Transcribe - Pydantic models for queue payloads and API validation.

Corresponding JSON schemas for the queue message and transcript artifact
live in /specs.
"""

from datetime import datetime  # noqa: I001
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from hippo.models import utc_now


# --- Queue Models ---


class QueueMessage(BaseModel):
    """Delivery queue payload, one per job creation.

    Corresponds to specs/queue_message.schema.json. May be delivered more
    than once.
    """

    model_config = ConfigDict(extra="forbid")

    job_id: str = Field(..., min_length=1, description="Transcription job identifier")
    audio_key: str = Field(..., min_length=1, description="Source audio object key")
    file_size: int | None = Field(default=None, ge=0, description="Audio size in bytes")
    metadata: dict[str, Any] = Field(
        default_factory=dict, description="Custom metadata of the audio object"
    )
    timestamp: datetime = Field(default_factory=utc_now, description="Enqueue time")


# --- Request Models ---


class TranscribeRequest(BaseModel):
    """Request payload for manually triggering a transcription."""

    model_config = ConfigDict(extra="forbid")

    audio_key: str = Field(..., min_length=1, description="Audio object key to transcribe")


# --- Response Models ---


class TranscribeQueuedResponse(BaseModel):
    """Response when a job was created and queued."""

    model_config = ConfigDict(extra="forbid")

    success: bool = Field(default=True)
    job_id: str = Field(..., description="Identifier of the created job")
    audio_key: str = Field(..., description="Audio object key")
    status: str = Field(default="queued", description="Always 'queued'")


class ErrorResponse(BaseModel):
    """Structured failure response used by every endpoint."""

    model_config = ConfigDict(extra="forbid")

    success: bool = Field(default=False)
    error_code: str = Field(..., description="Signal code from hippo.errors.ErrorCode")
    error: str = Field(..., description="Human-readable error description")
    job_id: str | None = Field(default=None, description="Job identifier, if one exists")
    status: str | None = Field(default=None, description="Job status, for IN_PROGRESS")


class JobStatusResponse(BaseModel):
    """Job record as returned by GET /api/status/{job_id}."""

    model_config = ConfigDict(extra="forbid")

    id: str
    audio_key: str
    status: str
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    file_size: int | None = None
    duration_seconds: float | None = None
    word_count: int | None = None
    deepgram_request_id: str | None = None
    cost_cents: int | None = None
    cost_dollars: str | None = Field(default=None, description="cost_cents / 100, 2 decimals")


class TranscriptResultResponse(BaseModel):
    """Transcript payload returned by GET /api/result/{job_id}.

    speakers is only present when the provider returned speaker labels.
    """

    model_config = ConfigDict(extra="forbid")

    job_id: str
    audio_key: str
    transcript: str
    words: list[dict[str, Any]]
    metadata: dict[str, Any]
    processing_time_ms: int | None = None
    timestamp: str | None = None
    speakers: Any | None = None


__all__ = [
    "QueueMessage",
    "TranscribeRequest",
    "TranscribeQueuedResponse",
    "ErrorResponse",
    "JobStatusResponse",
    "TranscriptResultResponse",
]
