"""Hippo Transcribe - Transcription provider client.

The provider is an opaque capability: audio bytes in, structured transcript
(words with timings, confidence, optional speaker labels) out. This module
speaks the Deepgram pre-recorded HTTP API over httpx.

There is no mid-flight cancellation; the transport timeout is the only bound
on how long a call may take.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from hippo.config import DEEPGRAM_API_KEY, DEEPGRAM_API_URL, PROVIDER_TIMEOUT_SECONDS
from hippo.errors import ProviderError

logger = logging.getLogger(__name__)

# Longest provider error body kept in job error messages
MAX_ERROR_BODY_CHARS = 500


@dataclass(frozen=True)
class TranscriptionOptions:
    """Request options sent with every transcription call.

    Punctuation, paragraphs, utterances and smart formatting are always
    requested; only diarization is configurable.
    """

    model: str
    language: str
    diarize: bool = False

    def to_params(self) -> dict[str, str]:
        params = {
            "model": self.model,
            "language": self.language,
            "punctuate": "true",
            "paragraphs": "true",
            "utterances": "true",
            "smart_format": "true",
        }
        if self.diarize:
            params["diarize"] = "true"
        return params


class TranscriptionProvider(Protocol):
    """Anything that can turn audio bytes into a raw provider result."""

    def transcribe(
        self, audio: bytes, content_type: str, options: TranscriptionOptions
    ) -> dict[str, Any]: ...


class DeepgramProvider:
    """Deepgram /v1/listen client."""

    def __init__(
        self,
        api_url: str = DEEPGRAM_API_URL,
        api_key: str = DEEPGRAM_API_KEY,
        timeout: float = PROVIDER_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ):
        self.api_url = api_url
        self._api_key = api_key
        self._client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def transcribe(
        self, audio: bytes, content_type: str, options: TranscriptionOptions
    ) -> dict[str, Any]:
        """Send audio to the provider and return its parsed JSON response.

        Args:
            audio: Raw audio bytes.
            content_type: MIME type of the audio.
            options: Request options.

        Returns:
            The provider's JSON response as a dict.

        Raises:
            ProviderError: On transport failure, non-2xx status, or a body
                that is not a JSON object.
        """
        headers = {
            "Authorization": f"Token {self._api_key}",
            "Content-Type": content_type or "audio/mpeg",
        }

        try:
            response = self._client.post(
                self.api_url,
                params=options.to_params(),
                headers=headers,
                content=audio,
            )
        except httpx.HTTPError as e:
            raise ProviderError(None, f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            raise ProviderError(response.status_code, response.text[:MAX_ERROR_BODY_CHARS])

        try:
            result = response.json()
        except ValueError as e:
            raise ProviderError(response.status_code, f"Invalid JSON response: {e}") from e

        if not isinstance(result, dict):
            raise ProviderError(response.status_code, "Response is not a JSON object")

        logger.debug(
            "Provider responded %d (request_id=%s)",
            response.status_code,
            (result.get("metadata") or {}).get("request_id"),
        )
        return result
