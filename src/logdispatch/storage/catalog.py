"""
Indexed media catalog storage.

Some platforms forbid writing shared storage by path; files there can only be
reached through a catalog that maps (relative path, display name) to a row id
and hands out a stream for that id. This backend reproduces that model on top
of SQLite via SQLAlchemy: the catalog index lives in ``catalog.db`` and each
entry's bytes live in ``media/<id>.blob``.

Appends follow the catalog protocol: look the entry up, insert it when missing,
then stream-append to the entry's content.
"""

from __future__ import annotations

import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from sqlalchemy import DateTime, Integer, String, UniqueConstraint, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.sql import func

from logdispatch.diagnostics import get_logger
from logdispatch.exceptions import WriteFailure

from .base import StorageBackend, validate_blob_id

logger = get_logger("logdispatch.storage.catalog")


class CatalogBase(DeclarativeBase):
    """Declarative base for the catalog index."""


class CatalogEntry(CatalogBase):
    """One catalogued file."""

    __tablename__ = "catalog_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    relative_path: Mapped[str] = mapped_column(String(512), nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False, default="text/plain")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)

    __table_args__ = (UniqueConstraint("relative_path", "display_name", name="uq_catalog_entries_path_name"),)


class CatalogStorageBackend(StorageBackend):
    """Blobs addressed by display name within one catalog relative path."""

    def __init__(self, catalog_dir: str | Path, relative_path: str, *, mime_type: str = "text/plain"):
        self._catalog_dir = Path(catalog_dir)
        self._media_dir = self._catalog_dir / "media"
        self._relative_path = relative_path
        self._mime_type = mime_type
        self._engine = None
        self._sessions: Optional[sessionmaker[Session]] = None
        # Serializes lookup-or-insert so two writers never create the same entry twice.
        self._index_lock = threading.Lock()

    @property
    def relative_path(self) -> str:
        return self._relative_path

    @property
    def is_open(self) -> bool:
        """Whether the index engine is currently connected."""
        return self._sessions is not None

    def prepare(self) -> None:
        if self._sessions is not None:
            return
        try:
            self._media_dir.mkdir(parents=True, exist_ok=True)
            self._engine = create_engine(
                f"sqlite:///{self._catalog_dir / 'catalog.db'}",
                connect_args={"check_same_thread": False},
            )
            CatalogBase.metadata.create_all(self._engine)
        except (OSError, SQLAlchemyError) as exc:
            raise WriteFailure(operation="prepare", blob_id=str(self._catalog_dir), reason=str(exc)) from exc
        self._sessions = sessionmaker(bind=self._engine, expire_on_commit=False)
        logger.debug("catalog_storage_ready", catalog_dir=str(self._catalog_dir), relative_path=self._relative_path)

    def _session(self) -> Session:
        if self._sessions is None:
            self.prepare()
        assert self._sessions is not None
        return self._sessions()

    def _media_path(self, entry_id: int) -> Path:
        return self._media_dir / f"{entry_id}.blob"

    def find_entry(self, blob_id: str) -> Optional[int]:
        """Id of the catalog entry for ``blob_id``, if one exists."""
        stmt = select(CatalogEntry.id).where(
            CatalogEntry.relative_path == self._relative_path,
            CatalogEntry.display_name == validate_blob_id(blob_id),
        )
        try:
            with self._session() as db:
                return db.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise WriteFailure(operation="query", blob_id=blob_id, reason=str(exc)) from exc

    def _find_or_create_entry(self, blob_id: str) -> int:
        with self._index_lock:
            entry_id = self.find_entry(blob_id)
            if entry_id is not None:
                return entry_id
            try:
                with self._session() as db:
                    entry = CatalogEntry(
                        relative_path=self._relative_path,
                        display_name=blob_id,
                        mime_type=self._mime_type,
                    )
                    db.add(entry)
                    db.commit()
                    logger.debug("catalog_entry_created", entry_id=entry.id, display_name=blob_id)
                    return entry.id
            except SQLAlchemyError as exc:
                raise WriteFailure(operation="insert", blob_id=blob_id, reason=str(exc)) from exc

    def append(self, blob_id: str, data: bytes) -> None:
        entry_id = self._find_or_create_entry(blob_id)
        try:
            with self._media_path(entry_id).open("ab") as stream:
                stream.write(data)
                stream.flush()
        except OSError as exc:
            raise WriteFailure(operation="append", blob_id=blob_id, reason=str(exc)) from exc

    def read(self, blob_id: str) -> bytes:
        entry_id = self.find_entry(blob_id)
        if entry_id is None:
            return b""
        try:
            return self._media_path(entry_id).read_bytes()
        except FileNotFoundError:
            return b""
        except OSError as exc:
            raise WriteFailure(operation="read", blob_id=blob_id, reason=str(exc)) from exc

    def size(self, blob_id: str) -> int:
        entry_id = self.find_entry(blob_id)
        if entry_id is None:
            return 0
        try:
            return self._media_path(entry_id).stat().st_size
        except FileNotFoundError:
            return 0
        except OSError as exc:
            raise WriteFailure(operation="size", blob_id=blob_id, reason=str(exc)) from exc

    def exists(self, blob_id: str) -> bool:
        return self.find_entry(blob_id) is not None

    def clear(self, blob_id: str) -> None:
        entry_id = self.find_entry(blob_id)
        if entry_id is None:
            return
        try:
            self._media_path(entry_id).write_bytes(b"")
        except OSError as exc:
            raise WriteFailure(operation="clear", blob_id=blob_id, reason=str(exc)) from exc

    def delete(self, blob_id: str) -> bool:
        with self._index_lock:
            try:
                with self._session() as db:
                    entry = db.execute(
                        select(CatalogEntry).where(
                            CatalogEntry.relative_path == self._relative_path,
                            CatalogEntry.display_name == validate_blob_id(blob_id),
                        )
                    ).scalar_one_or_none()
                    if entry is None:
                        return False
                    entry_id = entry.id
                    db.delete(entry)
                    db.commit()
            except SQLAlchemyError as exc:
                raise WriteFailure(operation="delete", blob_id=blob_id, reason=str(exc)) from exc

        try:
            self._media_path(entry_id).unlink(missing_ok=True)
        except OSError as exc:
            raise WriteFailure(operation="delete", blob_id=blob_id, reason=str(exc)) from exc
        logger.debug("catalog_entry_deleted", entry_id=entry_id, display_name=blob_id)
        return True

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._sessions = None

    def describe(self, blob_id: str) -> str:
        return f"catalog://{self._relative_path}{blob_id}"
