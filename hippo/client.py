"""Hippo Transcribe - Polling client for the transcription API.

Client-side helper: trigger a transcription, read status and results, and
poll until a job finishes. Polling is bounded (fixed interval, maximum
number of attempts) and ends with PollTimeoutError, which is distinct from
the job itself failing (TranscriptionFailedError).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from hippo.config import CLIENT_TIMEOUT_SECONDS, POLL_INTERVAL_SECONDS, POLL_MAX_ATTEMPTS
from hippo.errors import ClientRequestError, PollTimeoutError, TranscriptionFailedError

logger = logging.getLogger(__name__)


class TranscriptionClient:
    """Thin httpx wrapper around the transcription API."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = CLIENT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self.base_url = base_url.rstrip("/")
        self._sleep = sleep
        self._client = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self) -> TranscriptionClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        """Send a request and return the decoded JSON body.

        Raises:
            ClientRequestError: On timeout, transport failure or non-2xx status.
        """
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ClientRequestError("Request timeout") from e
        except httpx.HTTPError as e:
            raise ClientRequestError(f"Request failed: {e}") from e

        if not response.is_success:
            try:
                body = response.json()
                message = body.get("error") or f"HTTP {response.status_code}"
            except (ValueError, AttributeError):
                message = response.reason_phrase or f"HTTP {response.status_code}"
            raise ClientRequestError(message, status_code=response.status_code)

        return response.json()

    def health(self) -> bool:
        try:
            return self._client.get("/api/health").is_success
        except httpx.HTTPError:
            return False

    def get_status(self, job_id: str) -> dict[str, Any]:
        return self.request("GET", f"/api/status/{job_id}")

    def get_result(self, job_id: str) -> dict[str, Any]:
        return self.request("GET", f"/api/result/{job_id}")

    def transcribe(self, audio_key: str) -> dict[str, Any]:
        return self.request("POST", "/api/transcribe", json={"audio_key": audio_key})

    def wait_for_transcription(
        self,
        job_id: str,
        max_attempts: int = POLL_MAX_ATTEMPTS,
        interval: float = POLL_INTERVAL_SECONDS,
    ) -> dict[str, Any]:
        """Poll a job until it completes, then return its result.

        Args:
            job_id: Job to wait for.
            max_attempts: Maximum number of status polls.
            interval: Seconds between polls.

        Returns:
            The transcript payload.

        Raises:
            TranscriptionFailedError: If the job failed.
            PollTimeoutError: If the job did not finish within max_attempts polls.
        """
        for attempt in range(1, max_attempts + 1):
            status = self.get_status(job_id)

            if status.get("status") == "completed":
                return self.get_result(job_id)

            if status.get("status") == "failed":
                raise TranscriptionFailedError(job_id, status.get("error_message"))

            logger.debug(
                "Job %s is %s (poll %d/%d)", job_id, status.get("status"), attempt, max_attempts
            )
            if attempt < max_attempts:
                self._sleep(interval)

        raise PollTimeoutError(job_id, max_attempts)

    def transcribe_and_wait(self, audio_key: str, **poll_options) -> dict[str, Any]:
        """Trigger a transcription and wait for its result."""
        job = self.transcribe(audio_key)
        return self.wait_for_transcription(job["job_id"], **poll_options)
