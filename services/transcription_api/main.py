"""Hippo Transcribe - Transcription API FastAPI application.

Endpoints:
- POST /api/transcribe          create a job for an existing audio object
- GET  /api/status/{job_id}     job record (+ cost_dollars)
- GET  /api/result/{job_id}     transcript payload of a completed job
- GET  /api/health              liveness

Endpoints never raise: every fault is a structured ErrorResponse carrying an
error_code, mapped to an HTTP status by error_code_to_status.

Run with:
    uvicorn services.transcription_api.main:app --reload  # dev server only
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from hippo import __version__
from hippo.blob_store import BlobStore
from hippo.errors import ErrorCode, HippoError, JobInProgressError
from hippo.job_store import JobStore
from hippo.schemas import (
    ErrorResponse,
    JobStatusResponse,
    QueueMessage,
    TranscribeQueuedResponse,
    TranscribeRequest,
    TranscriptResultResponse,
)
from services.transcription_api.reader import ResultReader
from services.transcription_api.service import create_transcription_job, reclaim_stale_jobs

logger = logging.getLogger(__name__)

# --- Components ---

# Module-level components (initialized on startup unless configured first)
_job_store: JobStore | None = None
_audio_store: BlobStore | None = None
_transcript_store: BlobStore | None = None
_enqueue: Callable[[QueueMessage], None] | None = None


def configure(
    job_store: JobStore,
    audio_store: BlobStore,
    transcript_store: BlobStore,
    enqueue: Callable[[QueueMessage], None],
) -> None:
    """Install the components used by the endpoints.

    Called by the lifespan handler with process defaults, or by tests before
    the app starts (the lifespan then keeps what was configured).
    """
    global _job_store, _audio_store, _transcript_store, _enqueue
    _job_store = job_store
    _audio_store = audio_store
    _transcript_store = transcript_store
    _enqueue = enqueue


def reset() -> None:
    """Forget configured components (tests)."""
    global _job_store, _audio_store, _transcript_store, _enqueue
    _job_store = _audio_store = _transcript_store = _enqueue = None


def _configure_defaults() -> None:
    from hippo.config import AUDIO_BUCKET_DIR, TRANSCRIPTION_BUCKET_DIR
    from hippo.db import init_db
    from hippo.huey_app import enqueue_transcription

    _, SessionFactory = init_db()
    configure(
        job_store=JobStore(SessionFactory),
        audio_store=BlobStore(AUDIO_BUCKET_DIR, name="audio"),
        transcript_store=BlobStore(TRANSCRIPTION_BUCKET_DIR, name="transcriptions"),
        enqueue=enqueue_transcription,
    )


def _require(component, name: str):
    if component is None:
        raise RuntimeError(f"{name} not initialized. App lifespan not invoked?")
    return component


def get_job_store() -> JobStore:
    return _require(_job_store, "Job store")


def get_audio_store() -> BlobStore:
    return _require(_audio_store, "Audio store")


def get_transcript_store() -> BlobStore:
    return _require(_transcript_store, "Transcript store")


def get_enqueue() -> Callable[[QueueMessage], None]:
    return _require(_enqueue, "Enqueue")


def get_reader(
    job_store: Annotated[JobStore, Depends(get_job_store)],
    transcript_store: Annotated[BlobStore, Depends(get_transcript_store)],
) -> ResultReader:
    return ResultReader(job_store, transcript_store)


# --- Lifespan ---


def _reclaim_stale_jobs_safe() -> None:
    """Re-enqueue jobs whose delivery was lost (best-effort)."""
    from hippo.config import STALE_JOB_TTL_SECONDS

    try:
        reclaimed = reclaim_stale_jobs(_job_store, _audio_store, _enqueue, STALE_JOB_TTL_SECONDS)
        if reclaimed:
            logger.info("Startup sweep: re-enqueued %d stale job(s)", len(reclaimed))
    except Exception:
        logger.warning("Startup stale job sweep failed (non-fatal)", exc_info=True)


def _cleanup_orphan_temp_files_safe() -> None:
    """Remove temp files left by interrupted writes (best-effort)."""
    for store in (_audio_store, _transcript_store):
        if store is None or not store.root.exists():
            continue
        try:
            removed = store.cleanup_orphan_temp_files()
            if removed > 0:
                logger.info("Startup cleanup: removed %d orphan temp files from %s", removed, store.name)
        except Exception:
            # Best-effort: never crash startup
            logger.warning("Startup cleanup failed for %s (non-fatal)", store.name, exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Initializes the database and stores on startup, cleans up orphan
    temp files and re-enqueues stale jobs.
    """
    if _job_store is None:
        _configure_defaults()

    _cleanup_orphan_temp_files_safe()
    _reclaim_stale_jobs_safe()

    yield


# --- FastAPI App ---


app = FastAPI(
    title="Hippo Transcribe - Transcription API",
    description="Transcription job creation, status and results.",
    version=__version__,
    lifespan=lifespan,
)


# --- Error Handling ---


def error_code_to_status(error_code: str) -> int:
    """Map error codes to HTTP status codes.

    - NOT_FOUND, AUDIO_NOT_FOUND, ARTIFACT_MISSING -> 404
    - IN_PROGRESS -> 202
    - INVALID_REQUEST -> 400
    - everything else -> 500
    """
    if error_code in (ErrorCode.NOT_FOUND, ErrorCode.AUDIO_NOT_FOUND, ErrorCode.ARTIFACT_MISSING):
        return 404
    if error_code == ErrorCode.IN_PROGRESS:
        return 202
    if error_code == ErrorCode.INVALID_REQUEST:
        return 400
    return 500


def make_error_response(
    error_code: str,
    error: str,
    job_id: str | None = None,
    status: str | None = None,
) -> JSONResponse:
    """Create a JSON error response."""
    return JSONResponse(
        status_code=error_code_to_status(error_code),
        content=ErrorResponse(
            error_code=error_code,
            error=error,
            job_id=job_id,
            status=status,
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies get the structured error shape too."""
    missing = [
        ".".join(str(part) for part in err.get("loc", ())[1:]) or "request body"
        for err in exc.errors()
        if err.get("type") == "missing"
    ]
    if missing:
        message = f"Missing {', '.join(missing)}"
    else:
        message = "Invalid request body"
    return make_error_response(ErrorCode.INVALID_REQUEST, message)


# --- Endpoints ---


@app.post(
    "/api/transcribe",
    response_model=TranscribeQueuedResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid request"},
        404: {"model": ErrorResponse, "description": "Audio object not found"},
        500: {"model": ErrorResponse, "description": "Job could not be created"},
    },
    summary="Create a transcription job",
    description="Create a job for an audio object already in the audio bucket and queue it.",
)
def transcribe(
    request: TranscribeRequest,
    job_store: Annotated[JobStore, Depends(get_job_store)],
    audio_store: Annotated[BlobStore, Depends(get_audio_store)],
    enqueue: Annotated[Callable[[QueueMessage], None], Depends(get_enqueue)],
):
    try:
        result = create_transcription_job(job_store, audio_store, request.audio_key, enqueue)
    except Exception:
        logger.exception("Unexpected error creating job for %s", request.audio_key)
        return make_error_response(ErrorCode.INTERNAL_ERROR, "Failed to create transcription job")

    if not result.success:
        return make_error_response(
            result.error_code or ErrorCode.INTERNAL_ERROR,
            result.error or "Failed to create transcription job",
            job_id=result.job_id,
        )

    return TranscribeQueuedResponse(job_id=result.job_id, audio_key=result.audio_key)


@app.get(
    "/api/status/{job_id}",
    response_model=JobStatusResponse,
    responses={404: {"model": ErrorResponse, "description": "Job not found"}},
    summary="Get job status",
)
def get_status(job_id: str, reader: Annotated[ResultReader, Depends(get_reader)]):
    try:
        record = reader.get_status(job_id)
    except HippoError as e:
        return make_error_response(e.error_code, e.message, job_id=job_id)
    except Exception:
        logger.exception("Unexpected error reading status of job %s", job_id)
        return make_error_response(ErrorCode.INTERNAL_ERROR, "Failed to read job status")

    cost_cents = record.get("cost_cents")
    record["cost_dollars"] = f"{cost_cents / 100:.2f}" if cost_cents is not None else None
    return JobStatusResponse(**record)


@app.get(
    "/api/result/{job_id}",
    response_model=TranscriptResultResponse,
    response_model_exclude_none=True,
    responses={
        202: {"model": ErrorResponse, "description": "Transcription not ready"},
        404: {"model": ErrorResponse, "description": "Job or transcript not found"},
    },
    summary="Get transcript",
)
def get_result(job_id: str, reader: Annotated[ResultReader, Depends(get_reader)]):
    try:
        payload = reader.get_result(job_id)
    except JobInProgressError as e:
        return make_error_response(e.error_code, e.message, job_id=job_id, status=e.status)
    except HippoError as e:
        return make_error_response(e.error_code, e.message, job_id=job_id)
    except Exception:
        logger.exception("Unexpected error reading result of job %s", job_id)
        return make_error_response(ErrorCode.INTERNAL_ERROR, "Failed to read transcript")

    return TranscriptResultResponse(**payload)


@app.get("/api/health", summary="Health check")
def health_check():
    """Simple health check endpoint."""
    return {"status": "ok", "version": __version__}
