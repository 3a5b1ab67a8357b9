"""Hippo Transcribe - Utility modules."""

from hippo.utils.atomic_io import atomic_stream_to_file, atomic_write_bytes, atomic_write_text
from hippo.utils.hashing import sha256_file
from hippo.utils.keys import audio_key, transcript_key

__all__ = [
    # atomic_io
    "atomic_write_bytes",
    "atomic_write_text",
    "atomic_stream_to_file",
    # hashing
    "sha256_file",
    # keys
    "audio_key",
    "transcript_key",
]
