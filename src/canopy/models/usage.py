"""StorageUsage model — cached per-user totals over non-deleted files."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime
from sqlmodel import Field, SQLModel


class StorageUsageBase(SQLModel):
    """Base fields for a usage row. Subclass with ``table=True`` for a concrete table."""

    user_id: str = Field(primary_key=True)
    total_size: int = Field(default=0, sa_type=BigInteger)
    file_count: int = Field(default=0)
    last_calculated: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class StorageUsage(StorageUsageBase, table=True):
    """Default usage table, stored as ``canopy_storage_usage``."""

    __tablename__ = "canopy_storage_usage"
