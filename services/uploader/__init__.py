"""Hippo Transcribe - Uploader service.

Watches a local directory and uploads recordings to the audio bucket.
"""

__all__: list[str] = []
