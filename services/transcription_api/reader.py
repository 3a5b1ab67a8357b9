"""Hippo Transcribe - Result/Status Reader.

Read-only view over the Job Store and the transcription bucket. A completed
job always has a metadata row and an artifact; if either cannot be found the
reader reports ArtifactMissingError and logs it as a fault, since the worker
writes the artifact before it marks the job completed.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from hippo.blob_store import BlobStore
from hippo.errors import ArtifactMissingError, JobInProgressError, JobNotFoundError
from hippo.job_store import JobStore
from hippo.models import JobStatus

logger = logging.getLogger(__name__)


def _first_alternative(result: dict[str, Any]) -> dict[str, Any]:
    try:
        return result["results"]["channels"][0]["alternatives"][0] or {}
    except (KeyError, IndexError, TypeError):
        return {}


class ResultReader:
    """Status and transcript lookups by job id."""

    def __init__(self, job_store: JobStore, transcript_store: BlobStore):
        self.job_store = job_store
        self.transcript_store = transcript_store

    def get_status(self, job_id: str) -> dict[str, Any]:
        """Return the job record.

        Raises:
            JobNotFoundError: If the job does not exist.
        """
        job = self.job_store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job.to_dict()

    def get_result(self, job_id: str) -> dict[str, Any]:
        """Return the transcript payload of a completed job.

        Returns:
            Dict with job_id, audio_key, transcript, words, metadata,
            processing_time_ms, timestamp and, when the provider returned
            speaker labels, speakers.

        Raises:
            JobNotFoundError: If the job does not exist.
            JobInProgressError: If the job has not completed (carries status).
            ArtifactMissingError: If the metadata row or artifact is missing.
        """
        job = self.job_store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status != JobStatus.COMPLETED:
            raise JobInProgressError(job_id, job.status)

        metadata = self.job_store.get_metadata(job_id)
        if metadata is None:
            logger.error("Completed job %s has no metadata row", job_id)
            raise ArtifactMissingError(job_id, "metadata not found")

        artifact_obj = self.transcript_store.get(metadata.transcription_key)
        if artifact_obj is None:
            logger.error(
                "Completed job %s: artifact %s not found", job_id, metadata.transcription_key
            )
            raise ArtifactMissingError(job_id, "transcription file not found")

        try:
            artifact = artifact_obj.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error("Completed job %s: unreadable artifact: %s", job_id, e)
            raise ArtifactMissingError(job_id, f"unreadable transcription file: {e}") from e

        if not isinstance(artifact, dict):
            logger.error("Completed job %s: artifact is not a JSON object", job_id)
            raise ArtifactMissingError(job_id, "malformed transcription file")

        result = artifact.get("transcription_result") or {}
        alternative = _first_alternative(result)

        payload = {
            "job_id": job_id,
            "audio_key": artifact.get("audio_key", job.audio_key),
            "transcript": alternative.get("transcript") or "",
            "words": alternative.get("words") or [],
            "metadata": artifact.get("metadata") or {},
            "processing_time_ms": artifact.get("processing_time_ms"),
            "timestamp": artifact.get("timestamp"),
        }

        speaker_labels = (result.get("results") or {}).get("speaker_labels")
        if speaker_labels:
            payload["speakers"] = speaker_labels
        return payload
