"""Hippo Transcribe - Transcription API service.

Job creation, status and result reads over HTTP.
"""

__all__: list[str] = []
