"""Tests for SharingService — public shares, passwords, and user grants."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from canopy.exceptions import ExpiredError, NotFoundError, PermissionDeniedError
from canopy.models import ResourcePermission, Share
from canopy.store.types import ResourceType

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from canopy.store.sharing import SharingService


def _hours(n: float) -> datetime:
    return datetime.now(UTC) + timedelta(hours=n)


# ---------------------------------------------------------------------------
# create_share
# ---------------------------------------------------------------------------


class TestCreateShare:
    async def test_create_share(self, sharing: SharingService, async_session: AsyncSession):
        share = await sharing.create_share(
            async_session, ResourceType.FILE, "f1", "read", "alice"
        )
        assert share.id
        assert share.resource_id == "f1"
        assert share.resource_type == "file"
        assert share.access_level == "read"
        assert share.created_by == "alice"
        assert share.password_hash is None

    async def test_token_is_long_and_unique(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        a = await sharing.create_share(async_session, ResourceType.FILE, "f1", "read", "alice")
        b = await sharing.create_share(async_session, ResourceType.FILE, "f1", "read", "alice")
        assert a.token != b.token
        # 32 random bytes encode to 43 url-safe characters
        assert len(a.token) >= 43

    async def test_admin_level_rejected(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        with pytest.raises(ValueError, match="Invalid access level"):
            await sharing.create_share(
                async_session, ResourceType.FILE, "f1", "admin", "alice"
            )

    async def test_unknown_level_rejected(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        with pytest.raises(ValueError):
            await sharing.create_share(
                async_session, ResourceType.FILE, "f1", "superuser", "alice"
            )

    async def test_past_expiry_rejected(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        with pytest.raises(ValueError, match="future"):
            await sharing.create_share(
                async_session, ResourceType.FILE, "f1", "read", "alice",
                expires_at=_hours(-1),
            )

    async def test_password_is_hashed(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        share = await sharing.create_share(
            async_session, ResourceType.FOLDER, "d1", "read", "alice", password="s3cret"
        )
        assert share.password_hash is not None
        assert share.password_hash != "s3cret"
        assert share.password_hash.startswith("$2")


# ---------------------------------------------------------------------------
# resolve_share / revoke_share
# ---------------------------------------------------------------------------


class TestResolveShare:
    async def test_resolve(self, sharing: SharingService, async_session: AsyncSession):
        share = await sharing.create_share(
            async_session, ResourceType.FILE, "f1", "write", "alice"
        )
        resolved = await sharing.resolve_share(async_session, share.token)
        assert resolved.id == share.id

    async def test_unknown_token(self, sharing: SharingService, async_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await sharing.resolve_share(async_session, "not-a-token")

    async def test_empty_token(self, sharing: SharingService, async_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await sharing.resolve_share(async_session, "")

    async def test_expired_share(self, sharing: SharingService, async_session: AsyncSession):
        share = Share(
            resource_id="f1", token="old-token", created_by="alice", expires_at=_hours(-1)
        )
        async_session.add(share)
        await async_session.flush()
        with pytest.raises(ExpiredError):
            await sharing.resolve_share(async_session, "old-token")

    async def test_expired_is_not_found(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        async_session.add(
            Share(resource_id="f1", token="old-token", created_by="alice", expires_at=_hours(-1))
        )
        await async_session.flush()
        with pytest.raises(NotFoundError):
            await sharing.resolve_share(async_session, "old-token")

    async def test_revoked_token_rejected(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        share = await sharing.create_share(
            async_session, ResourceType.FILE, "f1", "read", "alice"
        )
        assert await sharing.revoke_share(async_session, share.id) is True
        with pytest.raises(NotFoundError):
            await sharing.resolve_share(async_session, share.token)

    async def test_revoke_missing(self, sharing: SharingService, async_session: AsyncSession):
        assert await sharing.revoke_share(async_session, "nope") is False


class TestSharePasswords:
    async def test_correct_password(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        share = await sharing.create_share(
            async_session, ResourceType.FILE, "f1", "read", "alice", password="s3cret"
        )
        resolved = await sharing.resolve_share(async_session, share.token, password="s3cret")
        assert resolved.id == share.id

    async def test_missing_password(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        share = await sharing.create_share(
            async_session, ResourceType.FILE, "f1", "read", "alice", password="s3cret"
        )
        with pytest.raises(PermissionDeniedError):
            await sharing.resolve_share(async_session, share.token)

    async def test_wrong_password(self, sharing: SharingService, async_session: AsyncSession):
        share = await sharing.create_share(
            async_session, ResourceType.FILE, "f1", "read", "alice", password="s3cret"
        )
        with pytest.raises(PermissionDeniedError):
            await sharing.resolve_share(async_session, share.token, password="guess")

    async def test_empty_password_rejected(self, sharing: SharingService):
        with pytest.raises(ValueError):
            await sharing.hash_password("")

    async def test_overlong_password_rejected(self, sharing: SharingService):
        with pytest.raises(ValueError):
            await sharing.hash_password("x" * 73)


class TestUpdateShare:
    async def test_change_level_keeps_token(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        share = await sharing.create_share(
            async_session, ResourceType.FILE, "f1", "read", "alice"
        )
        token = share.token
        updated = await sharing.update_share(async_session, share.id, access_level="write")
        assert updated.access_level == "write"
        assert updated.token == token
        resolved = await sharing.resolve_share(async_session, token)
        assert resolved.access_level == "write"

    async def test_set_and_clear_password(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        share = await sharing.create_share(
            async_session, ResourceType.FILE, "f1", "read", "alice"
        )
        await sharing.update_share(async_session, share.id, password="n3w")
        assert share.password_hash is not None
        assert share.password_hash != "n3w"
        with pytest.raises(PermissionDeniedError):
            await sharing.resolve_share(async_session, share.token)
        resolved = await sharing.resolve_share(async_session, share.token, password="n3w")
        assert resolved.id == share.id

        await sharing.update_share(async_session, share.id, password=None)
        assert share.password_hash is None
        assert (await sharing.resolve_share(async_session, share.token)).id == share.id

    async def test_replace_password(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        share = await sharing.create_share(
            async_session, ResourceType.FILE, "f1", "read", "alice", password="old"
        )
        await sharing.update_share(async_session, share.id, password="new")
        with pytest.raises(PermissionDeniedError):
            await sharing.resolve_share(async_session, share.token, password="old")
        await sharing.resolve_share(async_session, share.token, password="new")

    async def test_clear_expiry(self, sharing: SharingService, async_session: AsyncSession):
        share = await sharing.create_share(
            async_session, ResourceType.FILE, "f1", "read", "alice", expires_at=_hours(1)
        )
        updated = await sharing.update_share(async_session, share.id, expires_at=None)
        assert updated.expires_at is None

    async def test_extend_expiry(self, sharing: SharingService, async_session: AsyncSession):
        share = await sharing.create_share(
            async_session, ResourceType.FILE, "f1", "read", "alice", expires_at=_hours(1)
        )
        later = _hours(48)
        updated = await sharing.update_share(async_session, share.id, expires_at=later)
        assert updated.expires_at == later

    async def test_past_expiry_rejected(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        share = await sharing.create_share(
            async_session, ResourceType.FILE, "f1", "read", "alice"
        )
        with pytest.raises(ValueError):
            await sharing.update_share(async_session, share.id, expires_at=_hours(-1))
        assert share.expires_at is None

    async def test_admin_level_rejected(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        share = await sharing.create_share(
            async_session, ResourceType.FILE, "f1", "read", "alice"
        )
        with pytest.raises(ValueError):
            await sharing.update_share(async_session, share.id, access_level="admin")
        assert share.access_level == "read"

    async def test_omitted_fields_untouched(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        expires = _hours(2)
        share = await sharing.create_share(
            async_session, ResourceType.FILE, "f1", "read", "alice",
            expires_at=expires, password="keep",
        )
        password_hash = share.password_hash
        await sharing.update_share(async_session, share.id, access_level="write")
        assert share.expires_at == expires
        assert share.password_hash == password_hash

    async def test_unknown_share(self, sharing: SharingService, async_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await sharing.update_share(async_session, "missing", access_level="write")


class TestListShares:
    async def test_list_shares(self, sharing: SharingService, async_session: AsyncSession):
        await sharing.create_share(async_session, ResourceType.FILE, "f1", "read", "alice")
        await sharing.create_share(async_session, ResourceType.FILE, "f1", "write", "alice")
        await sharing.create_share(async_session, ResourceType.FILE, "f2", "read", "alice")
        shares = await sharing.list_shares(async_session, ResourceType.FILE, "f1")
        assert {s.access_level for s in shares} == {"read", "write"}

    async def test_type_is_part_of_key(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        await sharing.create_share(async_session, ResourceType.FOLDER, "x", "read", "alice")
        assert await sharing.list_shares(async_session, ResourceType.FILE, "x") == []


# ---------------------------------------------------------------------------
# User grants
# ---------------------------------------------------------------------------


class TestGrants:
    async def test_grant_permission(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        grant = await sharing.grant_permission(
            async_session, ResourceType.FILE, "f1", "bob", "read", "alice"
        )
        assert grant.user_id == "bob"
        assert grant.level == "read"
        assert grant.granted_by == "alice"

    async def test_regrant_replaces_level(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        first = await sharing.grant_permission(
            async_session, ResourceType.FILE, "f1", "bob", "read", "alice"
        )
        second = await sharing.grant_permission(
            async_session, ResourceType.FILE, "f1", "bob", "admin", "alice"
        )
        assert second.id == first.id
        assert second.level == "admin"
        grants = await sharing.list_permissions(async_session, ResourceType.FILE, "f1")
        assert len(grants) == 1

    async def test_owner_level_not_grantable(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        with pytest.raises(ValueError, match="Invalid permission level"):
            await sharing.grant_permission(
                async_session, ResourceType.FILE, "f1", "bob", "owner", "alice"
            )

    async def test_expired_grant_is_absent(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        async_session.add(
            ResourcePermission(
                user_id="bob", resource_id="f1", level="write", expires_at=_hours(-1)
            )
        )
        await async_session.flush()
        assert await sharing.get_permission(async_session, "bob", ResourceType.FILE, "f1") is None
        found = await sharing.get_permission(
            async_session, "bob", ResourceType.FILE, "f1", include_expired=True
        )
        assert found is not None

    async def test_revoke_permission(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        await sharing.grant_permission(
            async_session, ResourceType.FILE, "f1", "bob", "read", "alice"
        )
        assert await sharing.revoke_permission(async_session, ResourceType.FILE, "f1", "bob")
        assert not await sharing.revoke_permission(async_session, ResourceType.FILE, "f1", "bob")

    async def test_list_shared_with_skips_expired(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        await sharing.grant_permission(
            async_session, ResourceType.FILE, "f1", "bob", "read", "alice"
        )
        async_session.add(
            ResourcePermission(
                user_id="bob", resource_id="f2", level="read", expires_at=_hours(-1)
            )
        )
        await async_session.flush()
        grants = await sharing.list_shared_with(async_session, "bob")
        assert [g.resource_id for g in grants] == ["f1"]

    async def test_delete_for_resources(
        self, sharing: SharingService, async_session: AsyncSession
    ):
        await sharing.create_share(async_session, ResourceType.FILE, "f1", "read", "alice")
        await sharing.grant_permission(
            async_session, ResourceType.FILE, "f1", "bob", "read", "alice"
        )
        await sharing.grant_permission(
            async_session, ResourceType.FILE, "f2", "bob", "read", "alice"
        )
        removed = await sharing.delete_for_resources(async_session, ResourceType.FILE, ["f1"])
        assert removed == 2
        assert await sharing.list_shares(async_session, ResourceType.FILE, "f1") == []
        assert len(await sharing.list_shared_with(async_session, "bob")) == 1
