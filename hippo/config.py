"""Hippo Transcribe - Configuration constants.

Module-level constants with environment overrides. No external config libraries.
Values are read once at import time; components that need them receive them
at construction rather than re-reading the environment per call.
"""

import os
from pathlib import Path

# Repository root (parent of hippo/)
REPO_ROOT = Path(__file__).parent.parent.resolve()


def _get_env_int(name: str, default: int, minimum: int = 1) -> int:
    """Get a positive integer from the environment or use the default.

    Args:
        name: Environment variable name.
        default: Value used when the variable is unset or invalid.
        minimum: Smallest accepted value.

    Returns:
        The parsed integer, or default.
    """
    env_val = os.environ.get(name)
    if env_val:
        try:
            value = int(env_val)
            if value >= minimum:
                return value
        except ValueError:
            pass
    return default


def _get_env_float(name: str, default: float) -> float:
    """Get a non-negative float from the environment or use the default."""
    env_val = os.environ.get(name)
    if env_val:
        try:
            value = float(env_val)
            if value >= 0:
                return value
        except ValueError:
            pass
    return default


def _get_env_bool(name: str, default: bool = False) -> bool:
    """Interpret "true"/"1"/"yes" (any case) as True."""
    env_val = os.environ.get(name)
    if env_val is None:
        return default
    return env_val.strip().lower() in ("1", "true", "yes")


# Data directories
DATA_DIR = Path(os.environ.get("HIPPO_DATA_DIR", str(REPO_ROOT / "data")))
AUDIO_BUCKET_DIR = DATA_DIR / "buckets" / "audio"
TRANSCRIPTION_BUCKET_DIR = DATA_DIR / "buckets" / "transcriptions"

# Database path
DB_PATH = DATA_DIR / "hippo.db"

# Queue directory and Huey database path
QUEUE_DIR = DATA_DIR / "queue"
HUEY_DB_PATH = QUEUE_DIR / "huey.db"

# --- Uploader ---

# Directory watched for new recordings (required by the uploader CLI)
WATCH_DIRECTORY = os.environ.get("WATCH_DIRECTORY")

# Optional directory that uploaded files are moved into
PROCESSED_DIRECTORY = os.environ.get("PROCESSED_DIRECTORY")

# Append-only dedup ledger
LEDGER_PATH = Path(os.environ.get("HIPPO_LEDGER_PATH", ".processed_files"))

# Static upper bound on concurrent uploads
UPLOAD_CONCURRENCY = _get_env_int("UPLOAD_CONCURRENCY", 3)

AUDIO_EXTENSIONS = (".mp3", ".wav", ".m4a", ".aac", ".ogg", ".flac", ".wma", ".opus")

# Write-finish detection: a file must keep the same size/mtime this long
WATCH_STABILITY_SECONDS = _get_env_float("WATCH_STABILITY_SECONDS", 2.0)
WATCH_POLL_INTERVAL_SECONDS = _get_env_float("WATCH_POLL_INTERVAL_SECONDS", 1.0)

# --- Transcription provider ---

DEEPGRAM_API_URL = os.environ.get("DEEPGRAM_API_URL", "https://api.deepgram.com/v1/listen")
DEEPGRAM_API_KEY = os.environ.get("DEEPGRAM_API_KEY", "")
TRANSCRIPTION_MODEL = os.environ.get("TRANSCRIPTION_MODEL", "nova-2")
LANGUAGE = os.environ.get("LANGUAGE", "en")
ENABLE_DIARIZATION = _get_env_bool("ENABLE_DIARIZATION", False)

# Transport timeout is the only bound on a provider call
PROVIDER_TIMEOUT_SECONDS = _get_env_float("PROVIDER_TIMEOUT_SEC", 300.0)

# Nova pricing: $0.0043 per minute = 0.43 cents per minute
COST_RATE_CENTS_PER_MINUTE = _get_env_float("COST_RATE_CENTS_PER_MINUTE", 0.43)

# --- Delivery queue ---

# Redeliveries after the first attempt; dead-lettering is huey's concern
MAX_DELIVERY_RETRIES = _get_env_int("MAX_DELIVERY_RETRIES", 3, minimum=0)
RETRY_DELAY_SECONDS = _get_env_int("RETRY_DELAY_SECONDS", 60, minimum=0)

# --- Polling client ---

CLIENT_TIMEOUT_SECONDS = 30.0
POLL_MAX_ATTEMPTS = 60
POLL_INTERVAL_SECONDS = 5.0

# --- Stale job reclaim ---

# A pending/processing job untouched this long lost its delivery (consumer
# crash after dequeue) and is re-enqueued. Must exceed PROVIDER_TIMEOUT_SEC.
STALE_JOB_TTL_SECONDS = _get_env_int("STALE_JOB_TTL_SECONDS", 1800)
RECLAIM_INTERVAL_MINUTES = _get_env_int("RECLAIM_INTERVAL_MINUTES", 10)
