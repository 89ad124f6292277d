"""StorageAccountingService — per-user byte and file totals."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import func
from sqlmodel import select

from .dialect import upsert_row
from .utils import utcnow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from canopy.models.files import FileBase
    from canopy.models.usage import StorageUsageBase

logger = logging.getLogger(__name__)


class StorageAccountingService:
    """Maintains the ``StorageUsage`` cache.

    A recompute always derives the totals from the owner's non-deleted
    files, so running it twice, or after an ambiguous failure, is safe.
    Runs inside the caller's session so the totals commit together with
    the mutation that triggered them.
    """

    def __init__(
        self,
        file_model: type[FileBase],
        usage_model: type[StorageUsageBase],
        dialect: str = "sqlite",
    ) -> None:
        self._file_model = file_model
        self._usage_model = usage_model
        self.dialect = dialect

    async def compute_totals(
        self, session: AsyncSession, user_id: str, *, live_only: bool = True
    ) -> tuple[int, int]:
        """Return ``(total_size, file_count)`` straight from the file table.

        With ``live_only=False`` the ``is_deleted`` column is not referenced
        and every row counts; used where the table has no soft-delete columns.
        """
        model = self._file_model
        conditions: list[Any] = [model.owner_id == user_id]
        if live_only:
            conditions.append(model.is_deleted.is_(False))  # type: ignore[union-attr]
        result = await session.execute(
            select(
                func.coalesce(func.sum(model.size), 0),
                func.count(model.id),
            ).where(*conditions)
        )
        total_size, file_count = result.one()
        return int(total_size), int(file_count)

    async def recompute(
        self, session: AsyncSession, user_id: str, *, live_only: bool = True
    ) -> StorageUsageBase:
        """Recompute and store the totals for *user_id*."""
        total_size, file_count = await self.compute_totals(
            session, user_id, live_only=live_only
        )
        await upsert_row(
            session,
            self.dialect,
            self._usage_model,
            values={
                "user_id": user_id,
                "total_size": total_size,
                "file_count": file_count,
                "last_calculated": utcnow(),
            },
            conflict_keys=["user_id"],
        )
        logger.debug(
            "Storage usage for %s: %d bytes in %d files", user_id, total_size, file_count
        )
        return await self._load(session, user_id)  # type: ignore[return-value]

    async def get_usage(self, session: AsyncSession, user_id: str) -> StorageUsageBase:
        """Return the cached row, computing it on first request."""
        usage = await self._load(session, user_id)
        if usage is None:
            return await self.recompute(session, user_id)
        return usage

    async def _load(self, session: AsyncSession, user_id: str) -> StorageUsageBase | None:
        model = self._usage_model
        result = await session.execute(
            select(model)
            .where(model.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
