"""
Platform context handed to sinks at initialization.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class PlatformContext:
    """Host-provided storage roots and capabilities.

    The dispatcher passes this through untouched; only sinks read it, and only
    to resolve where their storage lives.

    Attributes:
        data_dir: Private application directory (mail buffer lives here).
        public_dir: Shared storage root the file sink writes under.
        public_storage_writable: Whether ``public_dir`` may be written at all.
        scoped_storage: The platform only allows shared writes through an
            indexed catalog, so the file sink must use the catalog backend.
        catalog_dir: Where the catalog keeps its index and media files.
    """

    data_dir: Path
    public_dir: Path
    public_storage_writable: bool = True
    scoped_storage: bool = False
    catalog_dir: Optional[Path] = None

    @classmethod
    def for_directory(cls, root: str | Path, *, scoped_storage: bool = False) -> "PlatformContext":
        """Lay out every storage root beneath a single directory."""
        base = Path(root)
        return cls(
            data_dir=base / "data",
            public_dir=base / "public",
            scoped_storage=scoped_storage,
            catalog_dir=base / "catalog",
        )

    @property
    def resolved_catalog_dir(self) -> Path:
        return self.catalog_dir if self.catalog_dir is not None else self.public_dir / ".catalog"
