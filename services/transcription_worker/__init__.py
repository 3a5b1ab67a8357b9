"""Hippo Transcribe - Transcription Worker.

Queue consumer: provider call, metadata/cost derivation, artifact write and
job completion.
"""

__all__: list[str] = []
