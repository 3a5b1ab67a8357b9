"""Hippo Transcribe - Filesystem-backed Blob Store.

A bucket is a directory. Each object lives at {root}/{key}; its content type
and custom metadata live in a sidecar JSON at {root}/.meta/{key}.json.

Writes follow the atomic publish rule (hippo.utils.atomic_io), so readers
never observe a partially written object and overwriting a key is
idempotent. The object is published before its sidecar; an object without a
sidecar reads back with default metadata.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Protocol

from hippo.errors import StoreWriteError
from hippo.utils.atomic_io import (
    atomic_stream_to_file,
    atomic_write_bytes,
    atomic_write_text,
    cleanup_orphan_temp_files,
)

logger = logging.getLogger(__name__)

META_DIR_NAME = ".meta"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


class UploadProgressSink(Protocol):
    """Observer notified as an upload streams into the store."""

    def on_progress(self, key: str, loaded: int, total: int) -> None: ...


@dataclass
class BlobHead:
    """Object attributes without the body."""

    key: str
    size: int
    content_type: str = DEFAULT_CONTENT_TYPE
    custom_metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class BlobObject(BlobHead):
    """A stored object with its body."""

    body: bytes = b""

    def json(self) -> Any:
        return json.loads(self.body)


class BlobStore:
    """Content-addressed-by-key storage rooted at a directory."""

    def __init__(self, root: str | Path, name: str = "bucket"):
        self.root = Path(root)
        self.name = name

    def __repr__(self) -> str:
        return f"BlobStore(name={self.name!r}, root={str(self.root)!r})"

    # --- Paths ---

    def _object_path(self, key: str) -> Path:
        pure = PurePosixPath(key)
        if (
            not key
            or pure.is_absolute()
            or ".." in pure.parts
            or pure.parts[0] == META_DIR_NAME
        ):
            raise ValueError(f"Invalid object key: {key!r}")
        return self.root.joinpath(*pure.parts)

    def _meta_path(self, key: str) -> Path:
        pure = PurePosixPath(key)
        return self.root.joinpath(META_DIR_NAME, *pure.parts[:-1], f"{pure.name}.json")

    # --- Writes ---

    def put_bytes(
        self,
        key: str,
        data: bytes,
        content_type: str = DEFAULT_CONTENT_TYPE,
        custom_metadata: dict[str, str] | None = None,
    ) -> BlobHead:
        """Store bytes under key, replacing any existing object.

        Raises:
            StoreWriteError: If the object cannot be written.
        """
        path = self._object_path(key)
        try:
            atomic_write_bytes(path, data)
            self._write_meta(key, content_type, custom_metadata)
        except OSError as e:
            raise StoreWriteError(f"{self.name}: failed to write {key}: {e}") from e

        return BlobHead(
            key=key,
            size=len(data),
            content_type=content_type,
            custom_metadata=dict(custom_metadata or {}),
        )

    def put_file(
        self,
        key: str,
        source_path: str | Path,
        content_type: str = DEFAULT_CONTENT_TYPE,
        custom_metadata: dict[str, str] | None = None,
        progress: UploadProgressSink | None = None,
    ) -> BlobHead:
        """Stream a local file into the store under key.

        Args:
            key: Destination object key.
            source_path: Local file to read.
            content_type: Stored content type.
            custom_metadata: String metadata attached to the object.
            progress: Optional observer receiving (key, loaded, total).

        Returns:
            BlobHead describing the stored object.

        Raises:
            FileNotFoundError: If the source file does not exist.
            StoreWriteError: If the object cannot be written.
        """
        source_path = Path(source_path)
        path = self._object_path(key)
        total = source_path.stat().st_size

        on_chunk = None
        if progress is not None:

            def on_chunk(loaded: int) -> None:
                progress.on_progress(key, loaded, total)

        try:
            with open(source_path, "rb") as stream:
                size = atomic_stream_to_file(stream, path, on_chunk=on_chunk)
            self._write_meta(key, content_type, custom_metadata)
        except FileNotFoundError:
            raise
        except OSError as e:
            raise StoreWriteError(f"{self.name}: failed to write {key}: {e}") from e

        return BlobHead(
            key=key,
            size=size,
            content_type=content_type,
            custom_metadata=dict(custom_metadata or {}),
        )

    def _write_meta(
        self, key: str, content_type: str, custom_metadata: dict[str, str] | None
    ) -> None:
        meta = {
            "content_type": content_type,
            "custom_metadata": {k: str(v) for k, v in (custom_metadata or {}).items()},
        }
        atomic_write_text(self._meta_path(key), json.dumps(meta, sort_keys=True))

    # --- Reads ---

    def _read_meta(self, key: str) -> tuple[str, dict[str, str]]:
        meta_path = self._meta_path(key)
        try:
            meta = json.loads(meta_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return DEFAULT_CONTENT_TYPE, {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable metadata for %s/%s: %s", self.name, key, e)
            return DEFAULT_CONTENT_TYPE, {}
        return (
            meta.get("content_type") or DEFAULT_CONTENT_TYPE,
            dict(meta.get("custom_metadata") or {}),
        )

    def head(self, key: str) -> BlobHead | None:
        """Get object attributes, or None if the key does not exist."""
        path = self._object_path(key)
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            return None
        if not path.is_file():
            return None
        content_type, custom_metadata = self._read_meta(key)
        return BlobHead(
            key=key, size=size, content_type=content_type, custom_metadata=custom_metadata
        )

    def get(self, key: str) -> BlobObject | None:
        """Get the object with its body, or None if the key does not exist."""
        path = self._object_path(key)
        try:
            body = path.read_bytes()
        except (FileNotFoundError, IsADirectoryError):
            return None
        content_type, custom_metadata = self._read_meta(key)
        return BlobObject(
            key=key,
            size=len(body),
            content_type=content_type,
            custom_metadata=custom_metadata,
            body=body,
        )

    def exists(self, key: str) -> bool:
        return self._object_path(key).is_file()

    # --- Maintenance ---

    def cleanup_orphan_temp_files(self) -> int:
        """Remove temp files left by interrupted writes anywhere in the bucket."""
        return cleanup_orphan_temp_files(self.root, recursive=True)
