"""File model — metadata for one blob in an owner's tree.

Provides ``FileBase`` (non-table) and ``File`` (concrete table).
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, Index
from sqlmodel import Field, SQLModel


class FileBase(SQLModel):
    """Base fields for a file record. Subclass with ``table=True`` for a concrete table.

    ``storage_path`` is an opaque blob store handle, assigned once at
    creation.  ``version`` starts at 1 and increments on content replacement.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str
    owner_id: str = Field(index=True)
    folder_id: str | None = Field(default=None)
    size: int = Field(default=0, sa_type=BigInteger)
    mime_type: str = Field(default="application/octet-stream")
    storage_path: str = Field(unique=True)
    is_deleted: bool = Field(default=False)
    deleted_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    version: int = Field(default=1)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class File(FileBase, table=True):
    """Default file table, stored as ``canopy_files``."""

    __tablename__ = "canopy_files"
    __table_args__ = (Index("ix_canopy_files_owner_folder", "owner_id", "folder_id"),)
