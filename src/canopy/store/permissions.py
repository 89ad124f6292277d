"""PermissionEngine — decides whether a caller may act on a resource.

Resolution order:

1. The resource's owner gets ``AccessLevel.OWNER`` without any lookup.
2. Otherwise a live explicit grant for ``(user, resource)`` decides.
3. Otherwise a presented share token that points at the resource
   grants its ``access_level``; no user id is needed for this branch.
   A token for some other resource counts as no token at all, and a
   share password is only checked once the token matches.
4. Otherwise there is no access.

Grants on a folder do not extend to its children; every resource is
evaluated on its own.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from canopy.exceptions import NotFoundError, PermissionDeniedError

from .types import AccessLevel, ResourceType

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from canopy.models.files import FileBase
    from canopy.models.folders import FolderBase

    from .sharing import SharingService
    from .tree import TreeService

    Resource = FolderBase | FileBase

logger = logging.getLogger(__name__)


class PermissionEngine:
    """Evaluates ownership, explicit grants, and share tokens."""

    def __init__(self, tree: TreeService, sharing: SharingService) -> None:
        self._tree = tree
        self._sharing = sharing

    async def get_resource(
        self,
        session: AsyncSession,
        resource_type: ResourceType,
        resource_id: str,
        *,
        include_deleted: bool = False,
    ) -> Resource | None:
        if ResourceType(resource_type) is ResourceType.FOLDER:
            return await self._tree.find_folder(
                session, resource_id, include_deleted=include_deleted
            )
        return await self._tree.find_file(session, resource_id, include_deleted=include_deleted)

    async def resolve_level(
        self,
        session: AsyncSession,
        resource_type: ResourceType,
        resource: Resource,
        *,
        user_id: str | None = None,
        share_token: str | None = None,
        share_password: str | None = None,
    ) -> AccessLevel | None:
        """Return the caller's effective level on *resource*, or None."""
        return await self._level_for(
            session,
            ResourceType(resource_type),
            resource.id,
            resource.owner_id,
            user_id=user_id,
            share_token=share_token,
            share_password=share_password,
        )

    async def _level_for(
        self,
        session: AsyncSession,
        resource_type: ResourceType,
        resource_id: str,
        owner_id: str,
        *,
        user_id: str | None,
        share_token: str | None,
        share_password: str | None,
    ) -> AccessLevel | None:
        if user_id is not None and owner_id == user_id:
            return AccessLevel.OWNER

        if user_id is not None:
            grant = await self._sharing.get_permission(
                session, user_id, resource_type, resource_id
            )
            if grant is not None:
                return AccessLevel(grant.level)

        if share_token is not None:
            try:
                share = await self._sharing.find_share(session, share_token)
            except NotFoundError:
                return None
            if share.resource_id != resource_id or share.resource_type != resource_type.value:
                return None
            # Only the share's own resource can answer with a password error
            await self._sharing.check_password(share, share_password)
            return AccessLevel(share.access_level)

        return None

    async def check_level(
        self,
        session: AsyncSession,
        resource_type: ResourceType,
        resource_id: str,
        owner_id: str,
        required: AccessLevel,
        *,
        user_id: str | None = None,
        share_token: str | None = None,
        share_password: str | None = None,
    ) -> AccessLevel:
        """Check *required* against a resource known only by id and owner.

        Raises like ``require``, without loading the resource record.
        """
        resource_type = ResourceType(resource_type)
        level = await self._level_for(
            session,
            resource_type,
            resource_id,
            owner_id,
            user_id=user_id,
            share_token=share_token,
            share_password=share_password,
        )
        if level is None:
            logger.debug(
                "No access for %s to %s %s", user_id or "anonymous", resource_type.value, resource_id
            )
            raise NotFoundError(f"{resource_type.value.capitalize()} not found: {resource_id}")
        if not level.satisfies(required):
            raise PermissionDeniedError(
                f"Requires {required.value!r} access on {resource_type.value} {resource_id}"
            )
        return level

    async def require(
        self,
        session: AsyncSession,
        resource_type: ResourceType,
        resource_id: str,
        required: AccessLevel,
        *,
        user_id: str | None = None,
        share_token: str | None = None,
        share_password: str | None = None,
        include_deleted: bool = False,
    ) -> tuple[Resource, AccessLevel]:
        """Load a resource and check the caller holds at least *required*.

        Raises ``NotFoundError`` when the resource is absent or the caller
        has no access at all, so the two cases look the same.  Raises
        ``PermissionDeniedError`` when the caller has some access but not
        enough.  Trashed resources are visible to their owner only, and
        only when *include_deleted* is set.
        """
        resource_type = ResourceType(resource_type)
        resource = await self.get_resource(
            session, resource_type, resource_id, include_deleted=include_deleted
        )
        if resource is None:
            raise NotFoundError(f"{resource_type.value.capitalize()} not found: {resource_id}")
        if resource.is_deleted and resource.owner_id != user_id:
            raise NotFoundError(f"{resource_type.value.capitalize()} not found: {resource_id}")

        level = await self.check_level(
            session,
            resource_type,
            resource.id,
            resource.owner_id,
            required,
            user_id=user_id,
            share_token=share_token,
            share_password=share_password,
        )
        return resource, level
