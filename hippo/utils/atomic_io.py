"""Hippo Transcribe - Atomic I/O utilities.

Implements the atomic publish rule used by the Blob Store:
1. Write to a temp path in the same directory
2. Flush + fsync
3. Rename temp -> final (the publish boundary)

The final path either contains complete data or does not exist. Each write
gets its own temp file, so two writers racing on the same key never share a
temp file; whichever rename lands last wins and both candidates are whole.

Failpoints:
- ATOMIC_WRITE_AFTER_TMP_WRITE: After writing to temp file, before fsync
- ATOMIC_WRITE_AFTER_FSYNC_BEFORE_RENAME: After fsync, before atomic rename
- ATOMIC_WRITE_AFTER_RENAME: After atomic rename completes
"""

import os
import uuid
from collections.abc import Callable
from pathlib import Path

from hippo.utils.failpoints import maybe_fail

TEMP_SUFFIX = ".tmp"
DEFAULT_CHUNK_SIZE = 65536


def _write_all(fd: int, data: bytes) -> None:
    """Write all bytes to a file descriptor, handling partial writes.

    Args:
        fd: File descriptor to write to.
        data: Bytes to write.

    Raises:
        OSError: If write fails or returns 0 bytes unexpectedly.
    """
    view = memoryview(data)
    total_written = 0
    data_len = len(data)

    while total_written < data_len:
        try:
            written = os.write(fd, view[total_written:])
            if written == 0:
                raise OSError("os.write() returned 0 bytes unexpectedly")
            total_written += written
        except InterruptedError:
            continue


def temp_path_for(final_path: Path, temp_suffix: str = TEMP_SUFFIX) -> Path:
    """Unique sibling temp path for a final path (e.g. rec.mp3.3f2a1b9c.tmp)."""
    return final_path.with_name(f"{final_path.name}.{uuid.uuid4().hex[:8]}{temp_suffix}")


def _discard(fd: int, temp_path: Path) -> None:
    os.close(fd)
    try:
        os.remove(temp_path)
    except OSError:
        pass  # Best-effort cleanup


def atomic_write_bytes(
    final_path: str | Path,
    data: bytes,
    temp_suffix: str = TEMP_SUFFIX,
) -> None:
    """Atomically write bytes to a file.

    Args:
        final_path: The target path for the final file.
        data: Bytes to write.
        temp_suffix: Suffix for the temporary file (default: ".tmp").

    Raises:
        OSError: If directory creation, write, or rename fails.
    """
    final_path = Path(final_path)
    final_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = temp_path_for(final_path, temp_suffix)

    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    try:
        _write_all(fd, data)

        maybe_fail("ATOMIC_WRITE_AFTER_TMP_WRITE")

        os.fsync(fd)
    except OSError:
        _discard(fd, temp_path)
        raise
    else:
        os.close(fd)

    maybe_fail("ATOMIC_WRITE_AFTER_FSYNC_BEFORE_RENAME")

    os.replace(temp_path, final_path)
    _fsync_directory(final_path.parent)

    maybe_fail("ATOMIC_WRITE_AFTER_RENAME")


def atomic_write_text(
    final_path: str | Path,
    text: str,
    encoding: str = "utf-8",
    temp_suffix: str = TEMP_SUFFIX,
) -> None:
    """Atomically write text to a file.

    Args:
        final_path: The target path for the final file.
        text: Text string to write.
        encoding: Text encoding (default: utf-8).
        temp_suffix: Suffix for the temporary file (default: ".tmp").
    """
    atomic_write_bytes(final_path, text.encode(encoding), temp_suffix)


def atomic_stream_to_file(
    stream,
    final_path: str | Path,
    temp_suffix: str = TEMP_SUFFIX,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    on_chunk: Callable[[int], None] | None = None,
) -> int:
    """Atomically write a stream to a file.

    Used for uploads where data comes from a file-like object.

    Args:
        stream: File-like object with read() method.
        final_path: Target path for the output file.
        temp_suffix: Suffix for the temporary file (default: ".tmp").
        chunk_size: Buffer size for reading (default: 64KB).
        on_chunk: Called with the running byte total after each chunk.

    Returns:
        Total bytes written.

    Raises:
        OSError: If write or rename fails.
    """
    final_path = Path(final_path)
    final_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = temp_path_for(final_path, temp_suffix)

    total_bytes = 0
    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    try:
        while True:
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            if isinstance(chunk, str):
                chunk = chunk.encode("utf-8")
            _write_all(fd, chunk)
            total_bytes += len(chunk)
            if on_chunk is not None:
                on_chunk(total_bytes)

        maybe_fail("ATOMIC_WRITE_AFTER_TMP_WRITE")

        os.fsync(fd)
    except BaseException:
        # Progress observers may raise too; never leave the temp behind
        _discard(fd, temp_path)
        raise
    else:
        os.close(fd)

    maybe_fail("ATOMIC_WRITE_AFTER_FSYNC_BEFORE_RENAME")

    os.replace(temp_path, final_path)
    _fsync_directory(final_path.parent)

    maybe_fail("ATOMIC_WRITE_AFTER_RENAME")

    return total_bytes


def _fsync_directory(dir_path: Path) -> None:
    """Best-effort fsync on a directory for rename durability."""
    try:
        fd = os.open(dir_path, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
    except (OSError, AttributeError):
        # O_DIRECTORY is not available everywhere
        pass


def cleanup_orphan_temp_files(
    directory: str | Path,
    temp_suffix: str = TEMP_SUFFIX,
    recursive: bool = False,
) -> int:
    """Clean up orphan temp files left by interrupted writes.

    Called during startup to remove incomplete writes.

    Args:
        directory: Directory to scan for temp files.
        temp_suffix: Suffix pattern to match (default: ".tmp").
        recursive: Also scan subdirectories.

    Returns:
        Number of files removed.
    """
    directory = Path(directory)
    removed = 0

    if not directory.exists():
        return 0

    pattern = f"*{temp_suffix}"
    candidates = directory.rglob(pattern) if recursive else directory.glob(pattern)
    for temp_file in candidates:
        if not temp_file.is_file():
            continue
        try:
            temp_file.unlink()
            removed += 1
        except OSError:
            pass  # Best-effort cleanup

    return removed
