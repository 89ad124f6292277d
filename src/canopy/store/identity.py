"""Identity context — authenticated user value and the user directory."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlmodel import select

from .utils import utcnow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from canopy.models.users import UserBase

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    """A caller as vouched for by the identity provider.

    The storage core trusts ``id`` and performs no credential checks.
    """

    id: str
    email: str
    name: str = ""
    plan: str = "free"


class DatabaseUserDirectory:
    """``UserDirectory`` over the user table.

    Stateless; receives the concrete user model at construction and a
    session at call time.
    """

    def __init__(self, user_model: type[UserBase]) -> None:
        self._user_model = user_model

    async def get_by_email(self, session: AsyncSession, email: str) -> UserBase | None:
        """Case-insensitive email lookup."""
        model = self._user_model
        result = await session.execute(
            select(model).where(func.lower(model.email) == email.strip().lower())
        )
        return result.scalars().first()

    async def get_by_id(self, session: AsyncSession, user_id: str) -> UserBase | None:
        return await session.get(self._user_model, user_id)

    async def sync_user(self, session: AsyncSession, user: AuthenticatedUser) -> UserBase:
        """Record *user* on first sign-in, refresh profile fields afterwards.

        The id is immutable; email, name, and plan follow the identity provider.
        Flushes but does not commit.
        """
        record = await session.get(self._user_model, user.id)
        if record is None:
            record = self._user_model(
                id=user.id,
                email=user.email,
                name=user.name,
                plan=user.plan,
            )
            session.add(record)
            logger.debug("Recorded new user %s", user.id)
        elif (record.email, record.name, record.plan) != (user.email, user.name, user.plan):
            record.email = user.email
            record.name = user.name
            record.plan = user.plan
            record.updated_at = utcnow()
        await session.flush()
        return record
