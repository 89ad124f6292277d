"""Folder model — one node of a per-owner folder tree.

Provides ``FolderBase`` (non-table) and ``Folder`` (concrete table).
Subclass ``FolderBase`` with ``table=True`` and a custom ``__tablename__``
to use a different table name.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Index
from sqlmodel import Field, SQLModel


class FolderBase(SQLModel):
    """Base fields for a folder record. Subclass with ``table=True`` for a concrete table.

    ``parent_id = None`` places the folder at the owner's root.
    ``is_deleted`` and ``deleted_at`` always change together.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str
    owner_id: str = Field(index=True)
    parent_id: str | None = Field(default=None)
    is_deleted: bool = Field(default=False)
    deleted_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class Folder(FolderBase, table=True):
    """Default folder table, stored as ``canopy_folders``."""

    __tablename__ = "canopy_folders"
    __table_args__ = (Index("ix_canopy_folders_owner_parent", "owner_id", "parent_id"),)
