"""
Storage backend abstraction.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class StorageBackend(ABC):
    """Durable append/read/clear capability over named blobs.

    Implementations raise :class:`logdispatch.exceptions.WriteFailure` when the
    underlying storage fails. Callers are expected to serialize operations on
    the same blob; backends only guarantee their own bookkeeping is safe.
    """

    def prepare(self) -> None:
        """Create whatever the backend needs before the first operation."""

    @abstractmethod
    def append(self, blob_id: str, data: bytes) -> None:
        """Append ``data`` to the blob, creating it if missing."""
        ...

    @abstractmethod
    def read(self, blob_id: str) -> bytes:
        """Full contents of the blob, ``b""`` when it does not exist."""
        ...

    @abstractmethod
    def size(self, blob_id: str) -> int:
        """Size in bytes, 0 when the blob does not exist."""
        ...

    @abstractmethod
    def exists(self, blob_id: str) -> bool: ...

    @abstractmethod
    def clear(self, blob_id: str) -> None:
        """Truncate the blob to empty. Missing blobs are left missing."""
        ...

    @abstractmethod
    def delete(self, blob_id: str) -> bool:
        """Remove the blob. Returns whether anything was deleted."""
        ...

    def close(self) -> None:
        """Release held resources. The backend may be prepared again afterwards."""

    def describe(self, blob_id: str) -> str:
        """Human-readable location of a blob, for diagnostics."""
        return f"{type(self).__name__}:{blob_id}"


def validate_blob_id(blob_id: str) -> str:
    """Blob ids are plain names: no separators, no parent references."""
    if not blob_id or blob_id in {".", ".."} or "/" in blob_id or "\\" in blob_id:
        raise ValueError(f"Invalid blob id: {blob_id!r}")
    return blob_id
