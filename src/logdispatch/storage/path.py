"""
Direct path-based storage: one file per blob inside a directory.
"""

from __future__ import annotations

from pathlib import Path

from logdispatch.diagnostics import get_logger
from logdispatch.exceptions import WriteFailure

from .base import StorageBackend, validate_blob_id

logger = get_logger("logdispatch.storage.path")


class PathStorageBackend(StorageBackend):
    """Blobs are regular files under ``root``."""

    def __init__(self, root: str | Path):
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, blob_id: str) -> Path:
        return self._root / validate_blob_id(blob_id)

    def prepare(self) -> None:
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise WriteFailure(operation="prepare", blob_id=str(self._root), reason=str(exc)) from exc
        logger.debug("path_storage_ready", root=str(self._root))

    def append(self, blob_id: str, data: bytes) -> None:
        path = self.path_for(blob_id)
        try:
            with path.open("ab") as f:
                f.write(data)
                f.flush()
        except OSError as exc:
            raise WriteFailure(operation="append", blob_id=blob_id, reason=str(exc)) from exc

    def read(self, blob_id: str) -> bytes:
        path = self.path_for(blob_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return b""
        except OSError as exc:
            raise WriteFailure(operation="read", blob_id=blob_id, reason=str(exc)) from exc

    def size(self, blob_id: str) -> int:
        try:
            return self.path_for(blob_id).stat().st_size
        except FileNotFoundError:
            return 0
        except OSError as exc:
            raise WriteFailure(operation="size", blob_id=blob_id, reason=str(exc)) from exc

    def exists(self, blob_id: str) -> bool:
        return self.path_for(blob_id).is_file()

    def clear(self, blob_id: str) -> None:
        path = self.path_for(blob_id)
        if not path.exists():
            return
        try:
            with path.open("r+b") as f:
                f.truncate(0)
        except OSError as exc:
            raise WriteFailure(operation="clear", blob_id=blob_id, reason=str(exc)) from exc

    def delete(self, blob_id: str) -> bool:
        path = self.path_for(blob_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise WriteFailure(operation="delete", blob_id=blob_id, reason=str(exc)) from exc
        logger.debug("path_storage_deleted", path=str(path))
        return True

    def describe(self, blob_id: str) -> str:
        return str(self.path_for(blob_id))
