"""Hippo Transcribe - Dedup Ledger.

Durable record of local files that were already uploaded. The ledger is an
append-only log with one absolute path per line. It is replayed into an
in-memory set once at startup; after that lookups are in-memory and each
mark appends to both the set and the log (flushed and fsynced before
mark_processed returns).

There is no deletion or compaction. A missing log is a cold start: safe, but
files already present in the audio bucket may be uploaded again, which the
bucket tolerates because writes to an existing key are idempotent.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path

logger = logging.getLogger(__name__)


def normalize_path(path: str | Path) -> str:
    """Canonical ledger form of a path (absolute, symlinks resolved)."""
    return str(Path(path).expanduser().resolve())


class DedupLedger:
    """Append-only "already uploaded" ledger shared by the upload threads."""

    def __init__(self, log_path: str | Path):
        self.log_path = Path(log_path)
        self._entries: set[str] = set()
        self._lock = threading.Lock()
        # True when the log ends in a torn line that the next append must not extend
        self._needs_newline = False

    @classmethod
    def open(cls, log_path: str | Path) -> DedupLedger:
        """Create a ledger and replay its log."""
        ledger = cls(log_path)
        ledger.load()
        return ledger

    def load(self) -> int:
        """Replay the persisted log into memory.

        A final line without a trailing newline was cut short by a crash
        mid-append; it is ignored rather than trusted.

        Returns:
            Number of entries loaded.
        """
        with self._lock:
            self._entries.clear()
            self._needs_newline = False

            try:
                data = self.log_path.read_text(encoding="utf-8")
            except FileNotFoundError:
                logger.info("No processed files history found at %s, starting fresh", self.log_path)
                return 0

            lines = data.split("\n")
            tail = lines.pop()
            if tail:
                logger.warning(
                    "Ignoring torn ledger entry at end of %s: %r", self.log_path, tail
                )
                self._needs_newline = True

            self._entries.update(line for line in lines if line)
            logger.info("Loaded %d processed files", len(self._entries))
            return len(self._entries)

    def is_processed(self, path: str | Path) -> bool:
        return normalize_path(path) in self._entries

    def mark_processed(self, path: str | Path) -> bool:
        """Record a path as uploaded, durably.

        Args:
            path: Local file path that was uploaded.

        Returns:
            True if a new entry was written, False if it was already present.

        Raises:
            ValueError: If the path contains a newline.
            OSError: If the log cannot be appended to.
        """
        entry = normalize_path(path)
        if "\n" in entry:
            raise ValueError(f"Path cannot be recorded in the ledger: {entry!r}")

        with self._lock:
            if entry in self._entries:
                return False

            line = entry + "\n"
            if self._needs_newline:
                line = "\n" + line

            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                os.fsync(f.fileno())

            self._needs_newline = False
            self._entries.add(entry)
            return True

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, Path)):
            return False
        return self.is_processed(path)

    def __len__(self) -> int:
        return len(self._entries)
