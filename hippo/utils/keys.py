"""Hippo Transcribe - Canonical storage keys.

Keys are pure functions of (date, name) so a replayed write lands on the
same object. Dates are taken in UTC.
"""

from datetime import UTC, datetime
from pathlib import PurePath

AUDIO_PREFIX = "audio"
TRANSCRIPTION_PREFIX = "transcriptions"


def _date_prefix(when: datetime | None) -> str:
    when = when or datetime.now(UTC)
    return f"{when.year:04d}/{when.month:02d}/{when.day:02d}"


def audio_key(filename: str, when: datetime | None = None) -> str:
    """Get the audio bucket key for an uploaded file.

    Args:
        filename: Local file name (directory components are dropped).
        when: Upload time. Defaults to now (UTC).

    Returns:
        audio/{yyyy}/{mm}/{dd}/{filename}
    """
    name = PurePath(filename).name
    if not name:
        raise ValueError(f"Cannot derive an audio key from {filename!r}")
    return f"{AUDIO_PREFIX}/{_date_prefix(when)}/{name}"


def transcript_key(job_id: str, when: datetime | None = None) -> str:
    """Get the transcription bucket key for a job's artifact.

    Args:
        job_id: Transcription job identifier.
        when: Processing time. Defaults to now (UTC).

    Returns:
        transcriptions/{yyyy}/{mm}/{dd}/{job_id}.json
    """
    return f"{TRANSCRIPTION_PREFIX}/{_date_prefix(when)}/{job_id}.json"
