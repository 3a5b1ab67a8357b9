"""Hippo Transcribe - Hashing utilities.

Used for the file-hash custom metadata of uploaded recordings. Returns the
hex digest only (no prefix).
"""

import hashlib
from pathlib import Path


def sha256_file(path: str | Path) -> str:
    """Compute SHA256 hash of a file's full contents.

    Args:
        path: Path to the file to hash.

    Returns:
        SHA256 hex digest (64 lowercase hex characters, no prefix).

    Raises:
        FileNotFoundError: If the file does not exist.
        OSError: If the file cannot be read.
    """
    hasher = hashlib.sha256()

    # Read in chunks for memory efficiency with large recordings
    with open(path, "rb") as f:
        while chunk := f.read(65536):
            hasher.update(chunk)

    return hasher.hexdigest()

