"""ResourcePermission model — explicit grants from an owner to another user.

One row per ``(user_id, resource_id, resource_type)``; re-granting
replaces the existing row.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class ResourcePermissionBase(SQLModel):
    """Base fields for a grant record. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    resource_id: str = Field(index=True)
    resource_type: str = Field(default="file")
    level: str = Field(default="read")
    granted_by: str = Field(default="")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    expires_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )


class ResourcePermission(ResourcePermissionBase, table=True):
    """Default grant table, stored as ``canopy_permissions``."""

    __tablename__ = "canopy_permissions"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "resource_id",
            "resource_type",
            name="uq_canopy_permissions_grantee_resource",
        ),
    )
