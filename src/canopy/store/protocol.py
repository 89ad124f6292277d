"""External collaborator protocols — runtime-checkable interfaces.

The storage core treats the blob store and the identity provider as
opaque collaborators.  Anything implementing these protocols can be
handed to ``DriveAsync``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from canopy.models.users import UserBase

    from .types import UrlMode


@runtime_checkable
class BlobStore(Protocol):
    """Durable byte storage addressed by an opaque ``storage_path``.

    Implementations raise ``BlobStoreError`` on failure.  ``delete`` must
    succeed for a path that no longer exists so that retries are safe.
    """

    async def put(self, data: bytes, path_hint: str) -> str:
        """Store *data* and return its storage path."""
        ...

    async def get(self, storage_path: str) -> bytes: ...

    async def delete(self, storage_path: str) -> None: ...

    async def sign_url(
        self,
        storage_path: str,
        mode: UrlMode,
        ttl: int,
    ) -> str: ...


@runtime_checkable
class UserDirectory(Protocol):
    """Lookup of known users, backed by the identity provider."""

    async def get_by_email(
        self, session: AsyncSession, email: str
    ) -> UserBase | None: ...

    async def get_by_id(
        self, session: AsyncSession, user_id: str
    ) -> UserBase | None: ...
