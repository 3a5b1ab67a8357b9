"""Hippo Transcribe - Upload Scheduler.

Uploads local recordings into the audio bucket with bounded concurrency.

Per file:
1. Skip if the Dedup Ledger already has the path
2. Stat + SHA-256 of the full file
3. Stream into the audio bucket under audio/{yyyy}/{mm}/{dd}/{filename},
   reporting progress through an UploadProgressSink
4. Mark the path in the ledger (durable before returning)
5. Notify on_uploaded(key) (default: queue job creation), best-effort
6. Move the file to the processed directory, best-effort

A failure leaves the path unmarked so it is retried on the next run. The same
path scheduled twice is harmless: the second upload overwrites the same key
atomically and the ledger records one entry.

Failpoints:
- UPLOAD_AFTER_PUT_BEFORE_MARK: After the blob write, before the ledger mark
"""

from __future__ import annotations

import logging
import mimetypes
import shutil
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from hippo.blob_store import BlobStore, UploadProgressSink
from hippo.config import (
    AUDIO_BUCKET_DIR,
    LEDGER_PATH,
    PROCESSED_DIRECTORY,
    UPLOAD_CONCURRENCY,
    WATCH_DIRECTORY,
)
from hippo.ledger import DedupLedger
from hippo.models import utc_now
from hippo.utils.failpoints import maybe_fail
from hippo.utils.hashing import sha256_file
from hippo.utils.keys import audio_key

logger = logging.getLogger(__name__)

DEFAULT_AUDIO_CONTENT_TYPE = "audio/mpeg"


# --- Progress ---


class LoggingProgressSink:
    """Logs upload progress at (roughly) every `step` percent."""

    def __init__(self, step: int = 25):
        self.step = step
        self._last: dict[str, int] = {}
        self._lock = threading.Lock()

    def on_progress(self, key: str, loaded: int, total: int) -> None:
        percent = 100 if total <= 0 else int(loaded * 100 / total)
        with self._lock:
            last = self._last.get(key, -self.step)
            if percent < 100 and percent - last < self.step:
                return
            if percent >= 100:
                self._last.pop(key, None)
            else:
                self._last[key] = percent
        logger.info("Upload progress for %s: %d%%", key, percent)


# --- Result Types ---


@dataclass
class UploadResult:
    """Outcome of one upload attempt."""

    path: Path
    ok: bool
    key: str | None = None
    content_hash: str | None = None
    size: int | None = None
    skipped: bool = False
    error: str | None = None
    duration_ms: int | None = None


def guess_content_type(path: str | Path) -> str:
    content_type, _ = mimetypes.guess_type(str(path))
    return content_type or DEFAULT_AUDIO_CONTENT_TYPE


# --- Single Upload ---


def _move_to_processed(path: Path, processed_dir: Path) -> None:
    """Move an uploaded file out of the watch directory (best-effort)."""
    try:
        processed_dir.mkdir(parents=True, exist_ok=True)
        shutil.move(str(path), str(processed_dir / path.name))
    except OSError as e:
        logger.warning("Failed to move %s to processed directory: %s", path.name, e)


def upload_file(
    path: str | Path,
    audio_store: BlobStore,
    ledger: DedupLedger,
    progress: UploadProgressSink | None = None,
    processed_dir: str | Path | None = None,
    on_uploaded: Callable[[str], object] | None = None,
    now: datetime | None = None,
) -> UploadResult:
    """Upload one local file. Never raises.

    Args:
        path: Local file to upload.
        audio_store: Destination audio bucket.
        ledger: Dedup Ledger consulted before and marked after the upload.
        progress: Optional progress observer.
        processed_dir: If set, the file is moved here after success.
        on_uploaded: Called with the object key after the ledger mark, only
            by the upload that recorded the path first.
        now: Upload time (defaults to current UTC time).

    Returns:
        UploadResult with ok=True on success or skip, ok=False on failure.
    """
    path = Path(path)

    if ledger.is_processed(path):
        logger.info("Skipping already processed file: %s", path.name)
        return UploadResult(path=path, ok=True, skipped=True)

    started = time.monotonic()
    now = now or utc_now()
    key = None

    try:
        size = path.stat().st_size
        content_hash = sha256_file(path)
        key = audio_key(path.name, now)

        logger.info("Uploading %s (%.2f MB)", path.name, size / 1024 / 1024)

        audio_store.put_file(
            key,
            path,
            content_type=guess_content_type(path),
            custom_metadata={
                "original-filename": path.name,
                "upload-timestamp": now.isoformat(),
                "file-size": str(size),
                "file-hash": content_hash,
                "local-path": str(path.resolve()),
            },
            progress=progress,
        )

        maybe_fail("UPLOAD_AFTER_PUT_BEFORE_MARK")

        first_mark = ledger.mark_processed(path)
    except Exception as e:
        logger.exception("Failed to upload %s", path.name)
        return UploadResult(
            path=path,
            ok=False,
            key=key,
            error=str(e),
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    duration_ms = int((time.monotonic() - started) * 1000)

    if not first_mark:
        # A concurrent upload of the same path owns the notification and the move
        logger.info("Duplicate upload of %s; already recorded by another task", path.name)
        return UploadResult(path=path, ok=True, skipped=True, key=key, duration_ms=duration_ms)

    logger.info("Upload completed: %s -> %s (%.1fs)", path.name, key, duration_ms / 1000)

    if on_uploaded is not None:
        try:
            on_uploaded(key)
        except Exception:
            # The object is in the bucket; a job can still be created via the API
            logger.exception("Upload notification failed for %s", key)

    if processed_dir is not None:
        _move_to_processed(path, Path(processed_dir))

    return UploadResult(
        path=path,
        ok=True,
        key=key,
        content_hash=content_hash,
        size=size,
        duration_ms=duration_ms,
    )


# --- Scheduler ---


class UploadScheduler:
    """Runs uploads on a fixed-size thread pool."""

    def __init__(
        self,
        audio_store: BlobStore,
        ledger: DedupLedger,
        concurrency: int = UPLOAD_CONCURRENCY,
        processed_dir: str | Path | None = None,
        progress: UploadProgressSink | None = None,
        on_uploaded: Callable[[str], object] | None = None,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.audio_store = audio_store
        self.ledger = ledger
        self.concurrency = concurrency
        self.processed_dir = Path(processed_dir) if processed_dir else None
        self.progress = progress
        self.on_uploaded = on_uploaded

        self._executor = ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="upload")
        self._futures: set[Future] = set()
        self._lock = threading.Lock()

    def __enter__(self) -> UploadScheduler:
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown(wait=True)

    def submit(self, path: str | Path) -> Future | None:
        """Schedule an upload.

        Returns:
            Future resolving to an UploadResult, or None if the path is
            already in the ledger.
        """
        if self.ledger.is_processed(path):
            logger.debug("Not scheduling already processed file: %s", path)
            return None

        future = self._executor.submit(
            upload_file,
            path,
            self.audio_store,
            self.ledger,
            progress=self.progress,
            processed_dir=self.processed_dir,
            on_uploaded=self.on_uploaded,
        )
        with self._lock:
            self._futures.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)

    def wait_idle(self, timeout: float | None = None) -> list[UploadResult]:
        """Block until every scheduled upload has finished.

        Returns:
            Results of the uploads that were pending when called.
        """
        with self._lock:
            pending = list(self._futures)
        return [future.result(timeout=timeout) for future in pending]

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


# --- Standalone Execution ---


def run_uploader(
    watch_directory: str | Path | None = WATCH_DIRECTORY,
    processed_directory: str | Path | None = PROCESSED_DIRECTORY,
    ledger_path: str | Path = LEDGER_PATH,
    concurrency: int = UPLOAD_CONCURRENCY,
    notify: bool = True,
) -> None:
    """Upload existing files, then watch for new ones until interrupted."""
    from services.uploader.watcher import DirectoryWatcher, scan_audio_files

    if not watch_directory:
        raise SystemExit("Missing required configuration: WATCH_DIRECTORY")

    watch_directory = Path(watch_directory)
    if not watch_directory.is_dir():
        raise SystemExit(f"Watch directory does not exist: {watch_directory}")

    if processed_directory:
        Path(processed_directory).mkdir(parents=True, exist_ok=True)

    ledger = DedupLedger.open(ledger_path)
    audio_store = BlobStore(AUDIO_BUCKET_DIR, name="audio")

    on_uploaded = None
    if notify:
        from hippo.huey_app import enqueue_audio_uploaded

        on_uploaded = enqueue_audio_uploaded

    scheduler = UploadScheduler(
        audio_store,
        ledger,
        concurrency=concurrency,
        processed_dir=processed_directory,
        progress=LoggingProgressSink(),
        on_uploaded=on_uploaded,
    )

    existing = scan_audio_files(watch_directory)
    logger.info("Found %d existing audio files", len(existing))
    for path in existing:
        scheduler.submit(path)

    watcher = DirectoryWatcher(watch_directory, on_file=scheduler.submit)
    watcher.start()
    logger.info("Upload service started (concurrency=%d)", concurrency)

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Shutting down upload service...")
    finally:
        watcher.stop()
        scheduler.shutdown(wait=True)
        logger.info("Upload service stopped")


if __name__ == "__main__":
    import argparse

    logging.basicConfig(level=logging.INFO)

    parser = argparse.ArgumentParser(description="Upload local recordings to the audio bucket")
    parser.add_argument("--watch-dir", default=WATCH_DIRECTORY, help="Directory to watch")
    parser.add_argument("--processed-dir", default=PROCESSED_DIRECTORY, help="Move uploads here")
    parser.add_argument("--ledger", default=str(LEDGER_PATH), help="Dedup ledger file")
    parser.add_argument("--concurrency", type=int, default=UPLOAD_CONCURRENCY)
    parser.add_argument("--no-notify", action="store_true", help="Do not queue job creation")
    args = parser.parse_args()

    run_uploader(
        watch_directory=args.watch_dir,
        processed_directory=args.processed_dir,
        ledger_path=args.ledger,
        concurrency=args.concurrency,
        notify=not args.no_notify,
    )
