"""Hippo Transcribe - Core application modules.

Provides:
- Job Store (SQLite models + keyed state transitions)
- Dedup Ledger and Blob Store primitives
- Transcription provider client and delivery queue
- Core utilities: atomic_io, hashing, keys, failpoints
"""

__version__ = "0.1.0"
