"""
In-process storage, for hosts without durable storage and for tests.
"""

from __future__ import annotations

import threading

from .base import StorageBackend, validate_blob_id


class MemoryStorageBackend(StorageBackend):
    """Blobs kept as bytearrays; lost when the process exits."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytearray] = {}
        self._lock = threading.Lock()

    def append(self, blob_id: str, data: bytes) -> None:
        with self._lock:
            self._blobs.setdefault(validate_blob_id(blob_id), bytearray()).extend(data)

    def read(self, blob_id: str) -> bytes:
        with self._lock:
            return bytes(self._blobs.get(blob_id, b""))

    def size(self, blob_id: str) -> int:
        with self._lock:
            return len(self._blobs.get(blob_id, b""))

    def exists(self, blob_id: str) -> bool:
        with self._lock:
            return blob_id in self._blobs

    def clear(self, blob_id: str) -> None:
        with self._lock:
            if blob_id in self._blobs:
                self._blobs[blob_id] = bytearray()

    def delete(self, blob_id: str) -> bool:
        with self._lock:
            return self._blobs.pop(blob_id, None) is not None
