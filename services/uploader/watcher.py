"""Hippo Transcribe - Ingestion Watcher.

Polling directory watcher. A file is dispatched once its size and mtime have
stayed unchanged for stability_threshold seconds, so recordings that are
still being written are not picked up half-finished. Each path is dispatched
at most once per watcher; the Dedup Ledger decides whether it is uploaded.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path

from hippo.config import AUDIO_EXTENSIONS, WATCH_POLL_INTERVAL_SECONDS, WATCH_STABILITY_SECONDS

logger = logging.getLogger(__name__)


def is_audio_file(path: str | Path) -> bool:
    """True for a path with a known audio extension (case-insensitive)."""
    return Path(path).suffix.lower() in AUDIO_EXTENSIONS


def scan_audio_files(directory: str | Path) -> list[Path]:
    """List audio files directly inside directory, sorted by name.

    Hidden files are skipped. A missing directory yields an empty list.
    """
    directory = Path(directory)
    try:
        entries = list(directory.iterdir())
    except FileNotFoundError:
        logger.warning("Watch directory does not exist: %s", directory)
        return []

    return sorted(
        entry
        for entry in entries
        if entry.is_file() and not entry.name.startswith(".") and is_audio_file(entry)
    )


class DirectoryWatcher:
    """Background thread that reports new, fully written audio files."""

    def __init__(
        self,
        directory: str | Path,
        on_file: Callable[[Path], object],
        poll_interval: float = WATCH_POLL_INTERVAL_SECONDS,
        stability_threshold: float = WATCH_STABILITY_SECONDS,
        ignore_existing: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.directory = Path(directory)
        self.on_file = on_file
        self.poll_interval = poll_interval
        self.stability_threshold = stability_threshold
        self._clock = clock

        # path -> ((size, mtime_ns), first time that signature was seen)
        self._pending: dict[Path, tuple[tuple[int, int], float]] = {}
        self._seen: set[Path] = set()
        if ignore_existing:
            self._seen.update(scan_audio_files(self.directory))

        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="directory-watcher", daemon=True)
        self._thread.start()
        logger.info("Watching %s for new audio files", self.directory)

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.poll()
            except Exception:
                logger.exception("Watcher poll failed")
            self._stop.wait(self.poll_interval)

    def poll(self) -> list[Path]:
        """Run one scan and dispatch files that became stable.

        Returns:
            Paths dispatched during this poll.
        """
        now = self._clock()
        present = set()
        dispatched = []

        for path in scan_audio_files(self.directory):
            present.add(path)
            if path in self._seen:
                continue

            try:
                stat = path.stat()
            except FileNotFoundError:
                continue
            signature = (stat.st_size, stat.st_mtime_ns)

            previous = self._pending.get(path)
            if previous is None or previous[0] != signature:
                self._pending[path] = (signature, now)
                continue

            if now - previous[1] < self.stability_threshold:
                continue

            del self._pending[path]
            self._seen.add(path)
            logger.info("New file detected: %s", path.name)
            dispatched.append(path)
            try:
                self.on_file(path)
            except Exception:
                logger.exception("Dispatch failed for %s", path)

        # Forget files that disappeared (moved to processed/, deleted)
        for path in list(self._pending):
            if path not in present:
                del self._pending[path]
        self._seen &= present

        return dispatched
