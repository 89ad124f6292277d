"""User model — identities recorded on first sign-in.

Provides ``UserBase`` (non-table) and ``User`` (concrete table).
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class UserBase(SQLModel):
    """Base fields for a user record. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    email: str = Field(index=True, unique=True)
    name: str = Field(default="")
    plan: str = Field(default="free")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class User(UserBase, table=True):
    """Default user table, stored as ``canopy_users``."""

    __tablename__ = "canopy_users"
