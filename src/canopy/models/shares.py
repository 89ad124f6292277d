"""Share model — bearer tokens for anonymous access to one resource.

Provides ``ShareBase`` (non-table) and ``Share`` (concrete table).
Shares are durable rows so that tokens survive restarts and are visible
to every process sharing the database.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class ShareBase(SQLModel):
    """Base fields for a public share. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    resource_id: str = Field(index=True)
    resource_type: str = Field(default="file")
    token: str = Field(index=True, unique=True)
    access_level: str = Field(default="read")
    password_hash: str | None = Field(default=None)
    expires_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    created_by: str = Field(default="")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class Share(ShareBase, table=True):
    """Default share table, stored as ``canopy_shares``."""

    __tablename__ = "canopy_shares"
