"""SharingService — public share tokens and per-user permission grants.

Stateless service that receives the share and grant models at
construction and a session at call time.  Tokens live in the share
table, never in process memory, so every process sees the same set and
a revocation takes effect on the next lookup.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import uuid
from typing import TYPE_CHECKING

import bcrypt
from sqlmodel import select

from canopy.config import DriveConfig
from canopy.exceptions import ExpiredError, NotFoundError, PermissionDeniedError

from .dialect import upsert_row
from .types import GRANTABLE_LEVELS, SHAREABLE_LEVELS, AccessLevel, ResourceType
from .utils import as_utc, chunked, is_expired, utcnow

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from canopy.models.permissions import ResourcePermissionBase
    from canopy.models.shares import ShareBase

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of a password
_MAX_PASSWORD_BYTES = 72


class Unset:
    """Marker for "leave this field alone" in ``update_share``."""

    def __repr__(self) -> str:
        return "UNSET"


UNSET = Unset()


def _validate_expiry(expires_at: datetime | None) -> datetime | None:
    if expires_at is None:
        return None
    expires_at = as_utc(expires_at)
    if expires_at <= utcnow():
        raise ValueError("expires_at must be in the future")
    return expires_at


class SharingService:
    """Manages public shares and explicit user grants.

    Constructor receives the concrete models so callers can use custom
    SQLModel subclasses with different table names.
    """

    def __init__(
        self,
        share_model: type[ShareBase],
        permission_model: type[ResourcePermissionBase],
        dialect: str = "sqlite",
        config: DriveConfig | None = None,
    ) -> None:
        self._share_model = share_model
        self._permission_model = permission_model
        self.dialect = dialect
        self.config = config or DriveConfig()

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    async def hash_password(self, password: str) -> str:
        encoded = password.encode("utf-8")
        if not encoded:
            raise ValueError("Share password cannot be empty")
        if len(encoded) > _MAX_PASSWORD_BYTES:
            raise ValueError(f"Share password is longer than {_MAX_PASSWORD_BYTES} bytes")
        salt = bcrypt.gensalt(rounds=self.config.password_hash_rounds)
        hashed = await asyncio.to_thread(bcrypt.hashpw, encoded, salt)
        return hashed.decode("utf-8")

    @staticmethod
    async def verify_password(password: str, password_hash: str) -> bool:
        encoded = password.encode("utf-8")
        if len(encoded) > _MAX_PASSWORD_BYTES:
            return False
        return await asyncio.to_thread(
            bcrypt.checkpw, encoded, password_hash.encode("utf-8")
        )

    # ------------------------------------------------------------------
    # Public shares
    # ------------------------------------------------------------------

    def generate_token(self) -> str:
        """Return a URL-safe token from the OS CSPRNG."""
        return secrets.token_urlsafe(self.config.share_token_bytes)

    async def create_share(
        self,
        session: AsyncSession,
        resource_type: ResourceType,
        resource_id: str,
        access_level: AccessLevel | str,
        created_by: str,
        *,
        expires_at: datetime | None = None,
        password: str | None = None,
    ) -> ShareBase:
        """Mint a share token for one resource. Flushes but does not commit.

        Only the bcrypt hash of *password* is stored.
        """
        level = AccessLevel(access_level)
        if level not in SHAREABLE_LEVELS:
            raise ValueError(
                f"Invalid access level: {level.value!r}. Must be 'read' or 'write'."
            )
        resource_type = ResourceType(resource_type)
        expires_at = _validate_expiry(expires_at)
        password_hash = await self.hash_password(password) if password is not None else None

        share = self._share_model(
            id=str(uuid.uuid4()),
            resource_id=resource_id,
            resource_type=resource_type.value,
            token=self.generate_token(),
            access_level=level.value,
            password_hash=password_hash,
            expires_at=expires_at,
            created_by=created_by,
        )
        session.add(share)
        await session.flush()
        logger.info(
            "Share %s created on %s %s (%s) by %s",
            share.id, resource_type.value, resource_id, level.value, created_by,
        )
        return share

    async def get_share(self, session: AsyncSession, share_id: str) -> ShareBase | None:
        return await session.get(self._share_model, share_id)

    async def revoke_share(self, session: AsyncSession, share_id: str) -> bool:
        """Delete a share. Returns True if found."""
        share = await self.get_share(session, share_id)
        if share is None:
            return False
        await session.delete(share)
        await session.flush()
        logger.info("Share %s revoked", share_id)
        return True

    async def find_share(self, session: AsyncSession, token: str) -> ShareBase:
        """Look up a live share by token without checking its password.

        Raises ``NotFoundError`` for unknown tokens and ``ExpiredError``
        once ``expires_at`` has passed.
        """
        if not token:
            raise NotFoundError("Share not found")
        model = self._share_model
        result = await session.execute(select(model).where(model.token == token))
        share = result.scalar_one_or_none()
        if share is None:
            raise NotFoundError("Share not found")
        if is_expired(share.expires_at):
            raise ExpiredError(f"Share {share.id} expired at {share.expires_at}")
        return share

    async def check_password(self, share: ShareBase, password: str | None) -> None:
        """Raise ``PermissionDeniedError`` unless *password* opens *share*."""
        if share.password_hash is None:
            return
        if password is None or not await self.verify_password(password, share.password_hash):
            raise PermissionDeniedError("Share requires a valid password")

    async def resolve_share(
        self,
        session: AsyncSession,
        token: str,
        *,
        password: str | None = None,
    ) -> ShareBase:
        """Look up a live share by token and check its password.

        Raises ``NotFoundError`` for unknown tokens, ``ExpiredError`` once
        ``expires_at`` has passed, and ``PermissionDeniedError`` when a
        password-protected share is presented without the right password.
        """
        share = await self.find_share(session, token)
        await self.check_password(share, password)
        return share

    async def update_share(
        self,
        session: AsyncSession,
        share_id: str,
        *,
        access_level: AccessLevel | str | None = None,
        expires_at: datetime | None | Unset = UNSET,
        password: str | None | Unset = UNSET,
    ) -> ShareBase:
        """Change a share in place; the token stays the same.

        Omitted arguments are left alone.  ``expires_at=None`` removes the
        expiry and ``password=None`` removes the password.  A new password
        is stored as a bcrypt hash.  Flushes but does not commit.
        """
        share = await self.get_share(session, share_id)
        if share is None:
            raise NotFoundError(f"Share not found: {share_id}")

        level = None
        if access_level is not None:
            level = AccessLevel(access_level)
            if level not in SHAREABLE_LEVELS:
                raise ValueError(
                    f"Invalid access level: {level.value!r}. Must be 'read' or 'write'."
                )
        if not isinstance(expires_at, Unset):
            expires_at = _validate_expiry(expires_at)
        password_hash: str | None | Unset = UNSET
        if not isinstance(password, Unset):
            password_hash = await self.hash_password(password) if password is not None else None

        if level is not None:
            share.access_level = level.value
        if not isinstance(expires_at, Unset):
            share.expires_at = expires_at
        if not isinstance(password_hash, Unset):
            share.password_hash = password_hash
        await session.flush()
        logger.info("Share %s updated", share_id)
        return share

    async def list_shares(
        self,
        session: AsyncSession,
        resource_type: ResourceType,
        resource_id: str,
    ) -> list[ShareBase]:
        """List all shares on a resource, expired ones included."""
        model = self._share_model
        result = await session.execute(
            select(model)
            .where(
                model.resource_id == resource_id,
                model.resource_type == ResourceType(resource_type).value,
            )
            .order_by(model.created_at)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # User grants
    # ------------------------------------------------------------------

    async def grant_permission(
        self,
        session: AsyncSession,
        resource_type: ResourceType,
        resource_id: str,
        user_id: str,
        level: AccessLevel | str,
        granted_by: str,
        *,
        expires_at: datetime | None = None,
    ) -> ResourcePermissionBase:
        """Create or replace the grant for ``(user_id, resource)``."""
        level = AccessLevel(level)
        if level not in GRANTABLE_LEVELS:
            raise ValueError(
                f"Invalid permission level: {level.value!r}. Must be 'read', 'write' or 'admin'."
            )
        resource_type = ResourceType(resource_type)
        expires_at = _validate_expiry(expires_at)

        await upsert_row(
            session,
            self.dialect,
            self._permission_model,
            values={
                "id": str(uuid.uuid4()),
                "user_id": user_id,
                "resource_id": resource_id,
                "resource_type": resource_type.value,
                "level": level.value,
                "granted_by": granted_by,
                "created_at": utcnow(),
                "expires_at": expires_at,
            },
            conflict_keys=["user_id", "resource_id", "resource_type"],
            update_keys=["level", "granted_by", "created_at", "expires_at"],
        )
        logger.info(
            "Granted %s on %s %s to %s by %s",
            level.value, resource_type.value, resource_id, user_id, granted_by,
        )
        grant = await self.get_permission(
            session, user_id, resource_type, resource_id, include_expired=True
        )
        assert grant is not None
        return grant

    async def get_permission(
        self,
        session: AsyncSession,
        user_id: str,
        resource_type: ResourceType,
        resource_id: str,
        *,
        include_expired: bool = False,
    ) -> ResourcePermissionBase | None:
        """Return the grant for ``(user_id, resource)``; expired grants count as absent."""
        model = self._permission_model
        result = await session.execute(
            select(model)
            .where(
                model.user_id == user_id,
                model.resource_id == resource_id,
                model.resource_type == ResourceType(resource_type).value,
            )
            .execution_options(populate_existing=True)
        )
        grant = result.scalar_one_or_none()
        if grant is None:
            return None
        if not include_expired and is_expired(grant.expires_at):
            return None
        return grant

    async def revoke_permission(
        self,
        session: AsyncSession,
        resource_type: ResourceType,
        resource_id: str,
        user_id: str,
    ) -> bool:
        """Remove the grant for ``(user_id, resource)``. Returns True if found."""
        grant = await self.get_permission(
            session, user_id, resource_type, resource_id, include_expired=True
        )
        if grant is None:
            return False
        await session.delete(grant)
        await session.flush()
        logger.info("Revoked grant on %s %s from %s", resource_type, resource_id, user_id)
        return True

    async def list_permissions(
        self,
        session: AsyncSession,
        resource_type: ResourceType,
        resource_id: str,
    ) -> list[ResourcePermissionBase]:
        """List all grants on a resource, expired ones included."""
        model = self._permission_model
        result = await session.execute(
            select(model)
            .where(
                model.resource_id == resource_id,
                model.resource_type == ResourceType(resource_type).value,
            )
            .order_by(model.created_at)
        )
        return list(result.scalars().all())

    async def list_shared_with(
        self,
        session: AsyncSession,
        user_id: str,
    ) -> list[ResourcePermissionBase]:
        """List the non-expired grants held by *user_id*."""
        model = self._permission_model
        result = await session.execute(
            select(model).where(model.user_id == user_id).order_by(model.created_at)
        )
        now = utcnow()
        return [g for g in result.scalars().all() if not is_expired(g.expires_at, now)]

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def delete_for_resources(
        self,
        session: AsyncSession,
        resource_type: ResourceType,
        resource_ids: Iterable[str],
    ) -> int:
        """Drop every share and grant pointing at *resource_ids*."""
        ids = list(resource_ids)
        if not ids:
            return 0
        type_value = ResourceType(resource_type).value
        count = 0
        for model in (self._share_model, self._permission_model):
            for chunk in chunked(ids):
                result = await session.execute(
                    select(model).where(
                        model.resource_type == type_value,
                        model.resource_id.in_(chunk),  # type: ignore[union-attr]
                    )
                )
                for row in result.scalars().all():
                    await session.delete(row)
                    count += 1
        if count:
            await session.flush()
        return count
