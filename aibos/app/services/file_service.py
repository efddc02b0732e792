"""File storage on local disk, behind a small interface that an object store can replace."""

from __future__ import annotations

import os
from pathlib import Path, PurePosixPath

from aibos.app.core.config import settings


class StoragePathError(ValueError):
    pass


class FileStorageService:
    """Store and retrieve attachment bytes by relative path."""

    def __init__(self, root: str | None = None) -> None:
        self._root = Path(root or settings.FILE_STORAGE_PATH).resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, relative_path: str) -> Path:
        rel = PurePosixPath(relative_path)
        if rel.is_absolute() or ".." in rel.parts:
            raise StoragePathError(f"Invalid storage path: {relative_path}")
        return self._root / rel

    def save(self, relative_path: str, data: bytes) -> str:
        """Persist *data* under *relative_path* and return the relative path."""
        dest = self._resolve(relative_path)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(data)
        return relative_path

    def read(self, relative_path: str) -> bytes:
        return self._resolve(relative_path).read_bytes()

    def exists(self, relative_path: str) -> bool:
        return self._resolve(relative_path).exists()

    def delete(self, relative_path: str) -> None:
        path = self._resolve(relative_path)
        if path.exists():
            os.remove(path)
