"""Storage backends for durable log buffers.

Two strategies exist for shared storage (direct path vs. indexed catalog); the
choice is made once, from the platform's capabilities, by :func:`select_backend`.
"""

from __future__ import annotations

from logdispatch.context import PlatformContext

from .base import StorageBackend, validate_blob_id
from .catalog import CatalogStorageBackend
from .memory import MemoryStorageBackend
from .path import PathStorageBackend


def select_backend(context: PlatformContext, relative_directory: str) -> StorageBackend:
    """Pick the shared-storage strategy the platform permits.

    Args:
        context: Platform capabilities and storage roots
        relative_directory: Directory under the shared root, e.g. ``"Downloads/MyAppLogs/"``
    """
    if context.scoped_storage:
        return CatalogStorageBackend(context.resolved_catalog_dir, relative_directory)
    return PathStorageBackend(context.public_dir / relative_directory.strip("/"))


__all__ = [
    "StorageBackend",
    "PathStorageBackend",
    "CatalogStorageBackend",
    "MemoryStorageBackend",
    "select_backend",
    "validate_blob_id",
]
