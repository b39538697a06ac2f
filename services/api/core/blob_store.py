# services/api/core/blob_store.py
"""
Blob storage for originals and extracted page PDFs.

Paths are "/"-separated keys like `proj-1/drawings/civil/<ts>-<rand>-C1.00.pdf`.
Uploads never overwrite: writing to an existing key raises BlobExistsError.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from core.errors import BlobExistsError, BlobStoreError

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    def upload(self, path: str, data: bytes, content_type: str = "application/pdf") -> str:
        """Store `data` under `path`; returns the path."""
        ...

    def download(self, path: str) -> bytes:
        ...

    def delete(self, path: str) -> None:
        ...

    def exists(self, path: str) -> bool:
        ...


class LocalBlobStore:
    """Directory-tree implementation, used for local dev and tests."""

    def __init__(self, root_dir: str | Path):
        self.root = Path(root_dir).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        key = (path or "").strip().lstrip("/")
        if not key:
            raise BlobStoreError("Empty storage path")
        target = (self.root / key).resolve()
        if self.root != target and self.root not in target.parents:
            raise BlobStoreError(f"Storage path escapes root: {path}")
        return target

    def upload(self, path: str, data: bytes, content_type: str = "application/pdf") -> str:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            # "x" = exclusive create
            with open(target, "xb") as f:
                f.write(data)
        except FileExistsError as e:
            raise BlobExistsError(f"Blob already exists: {path}") from e
        except OSError as e:
            raise BlobStoreError(f"Failed to write blob {path}: {e}") from e

        logger.info("[blob_store] stored %s (%d bytes, %s)", path, len(data), content_type)
        return path

    def download(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except FileNotFoundError as e:
            raise BlobStoreError(f"Blob not found: {path}") from e
        except OSError as e:
            raise BlobStoreError(f"Failed to read blob {path}: {e}") from e

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise BlobStoreError(f"Failed to delete blob {path}: {e}") from e

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()


def make_blob_store(settings) -> BlobStore:
    """Pick the blob backend from settings (local | drive)."""
    backend = (settings.blob_backend or "local").lower()
    if backend == "drive":
        from core.drive_client import DriveBlobStore

        return DriveBlobStore.from_settings(settings)
    if backend == "local":
        return LocalBlobStore(settings.blob_root_dir)
    raise ValueError(f"Unknown BLOB_BACKEND: {settings.blob_backend}")
