"""DriveAsync — primary async facade over the storage core."""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from canopy.config import DriveConfig
from canopy.exceptions import (
    BlobStoreError,
    CanopyError,
    InvalidParentError,
    NotFoundError,
    UserNotFoundError,
)
from canopy.models import File, Folder, ResourcePermission, Share, StorageUsage, User
from canopy.store.accounting import StorageAccountingService
from canopy.store.dialect import get_dialect
from canopy.store.identity import AuthenticatedUser, DatabaseUserDirectory
from canopy.store.metadata import (
    file_to_info,
    folder_to_info,
    guess_mime_type,
    permission_to_info,
    share_to_info,
    usage_to_info,
)
from canopy.store.permissions import PermissionEngine
from canopy.store.protocol import BlobStore, UserDirectory
from canopy.store.sharing import UNSET, SharingService
from canopy.store.trash import TrashService, is_missing_column_error
from canopy.store.tree import TreeService
from canopy.store.types import (
    AccessLevel,
    ChildrenResult,
    FileInfo,
    FolderInfo,
    PermissionInfo,
    PurgeResult,
    ResolvedShare,
    ResourceType,
    ShareInfo,
    TrashResult,
    TreeResult,
    UrlMode,
    UsageInfo,
)
from canopy.store.utils import validate_name

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

    from canopy.store.sharing import Unset

logger = logging.getLogger(__name__)


class DriveAsync:
    """Async facade wiring the tree store, permission engine, trash,
    sharing, and storage accounting.

    Every public operation runs in its own session: permission checks,
    mutations, and the accounting recompute they trigger commit
    together or roll back together.

    Engine-based setup::

        engine = create_async_engine("postgresql+asyncpg://...")
        drive = DriveAsync(engine, blob_store=LocalDiskBlobStore("/srv/blobs"))
        await drive.create_tables()
        folder = await drive.create_folder("alice", "Docs")

    Callers identify themselves with ``user_id`` (trusted, already
    authenticated) and/or a public ``share_token``.
    """

    def __init__(
        self,
        engine: AsyncEngine | None = None,
        *,
        blob_store: BlobStore,
        session_factory: Callable[..., AsyncSession] | None = None,
        user_directory: UserDirectory | None = None,
        config: DriveConfig | None = None,
        dialect: str | None = None,
    ) -> None:
        if engine is None and session_factory is None:
            raise ValueError("Provide an engine or a session_factory")
        if not isinstance(blob_store, BlobStore):
            raise TypeError(f"{type(blob_store).__name__} does not implement BlobStore")
        if user_directory is not None and not isinstance(user_directory, UserDirectory):
            raise TypeError(f"{type(user_directory).__name__} does not implement UserDirectory")

        self._engine = engine
        self._owns_engine = False
        self._closed = False
        self._session_factory = session_factory or async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        if dialect is None:
            dialect = get_dialect(engine) if engine is not None else "sqlite"
        self.dialect = dialect
        self.config = config or DriveConfig()
        self._blob_store = blob_store

        # Composed services
        self.accounting = StorageAccountingService(File, StorageUsage, dialect)
        self.tree = TreeService(Folder, File, self.accounting, self.config)
        self.sharing = SharingService(Share, ResourcePermission, dialect, self.config)
        self.permissions = PermissionEngine(self.tree, self.sharing)
        self.trash = TrashService(
            self.tree, self.accounting, self.sharing, blob_store, self.config, dialect
        )
        self.users = DatabaseUserDirectory(User)
        self._user_directory: UserDirectory = user_directory or self.users

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        blob_store: BlobStore,
        user_directory: UserDirectory | None = None,
        config: DriveConfig | None = None,
    ) -> DriveAsync:
        """Build a drive on its own engine; ``close()`` disposes it."""
        drive = cls(
            create_async_engine(url, echo=False),
            blob_store=blob_store,
            user_directory=user_directory,
            config=config,
        )
        drive._owns_engine = True
        return drive

    @property
    def blob_store(self) -> BlobStore:
        return self._blob_store

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_tables(self) -> None:
        """Create every canopy table that does not exist yet."""
        if self._engine is None:
            raise CanopyError("create_tables requires an engine")
        tables = [
            model.__table__  # type: ignore[attr-defined]
            for model in (User, Folder, File, ResourcePermission, Share, StorageUsage)
        ]
        async with self._engine.begin() as conn:
            await conn.run_sync(
                lambda c: SQLModel.metadata.create_all(c, tables=tables, checkfirst=True)
            )

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._owns_engine and self._engine is not None:
            await self._engine.dispose()

    async def __aenter__(self) -> DriveAsync:
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Session management (per-operation)
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession]:
        """Yield a session that commits on success and rolls back on error."""
        if self._closed:
            raise CanopyError("Drive is closed")
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def sync_user(self, user: AuthenticatedUser) -> AuthenticatedUser:
        """Record an authenticated user on first sign-in."""
        async with self._session() as sess:
            record = await self.users.sync_user(sess, user)
            return AuthenticatedUser(
                id=record.id, email=record.email, name=record.name, plan=record.plan
            )

    # ------------------------------------------------------------------
    # Tree store
    # ------------------------------------------------------------------

    async def create_folder(
        self,
        user_id: str,
        name: str,
        parent_id: str | None = None,
    ) -> FolderInfo:
        async with self._session() as sess:
            folder = await self.tree.create_folder(sess, user_id, name, parent_id)
            return folder_to_info(folder)

    async def create_file(
        self,
        user_id: str,
        name: str,
        storage_path: str,
        *,
        folder_id: str | None = None,
        size: int = 0,
        mime_type: str | None = None,
    ) -> FileInfo:
        """Record a file whose bytes already live at *storage_path*."""
        async with self._session() as sess:
            file = await self.tree.create_file(
                sess,
                user_id,
                name,
                storage_path,
                folder_id=folder_id,
                size=size,
                mime_type=mime_type or guess_mime_type(name),
            )
            return file_to_info(file)

    async def upload_file(
        self,
        user_id: str,
        name: str,
        content: bytes,
        *,
        folder_id: str | None = None,
        mime_type: str | None = None,
    ) -> FileInfo:
        """Store *content* in the blob store and record it as a new file.

        If the record cannot be created the new blob is deleted again.
        """
        name = validate_name(name, self.config.max_name_length)
        storage_path = await self._blob_store.put(
            content, f"{user_id}/{uuid.uuid4().hex}/{name}"
        )
        try:
            return await self.create_file(
                user_id,
                name,
                storage_path,
                folder_id=folder_id,
                size=len(content),
                mime_type=mime_type,
            )
        except Exception:
            try:
                await self._blob_store.delete(storage_path)
            except BlobStoreError:
                logger.warning("Orphaned blob left at %s", storage_path, exc_info=True)
            raise

    async def upload_new_version(
        self,
        file_id: str,
        content: bytes,
        *,
        user_id: str | None = None,
        share_token: str | None = None,
        share_password: str | None = None,
        mime_type: str | None = None,
    ) -> FileInfo:
        """Replace a file's bytes in place and bump its version.

        The blob is overwritten before the record update commits.  If the
        transaction then rolls back, the stored bytes are the new content
        while ``size`` and ``version`` still describe the old one; retry the
        upload to bring them back in line.
        """
        async with self._session() as sess:
            file, _ = await self.permissions.require(
                sess,
                ResourceType.FILE,
                file_id,
                AccessLevel.WRITE,
                user_id=user_id,
                share_token=share_token,
                share_password=share_password,
            )
            storage_path = await self._blob_store.put(content, file.storage_path)
            if storage_path != file.storage_path:
                raise BlobStoreError(
                    f"Blob store relocated {file.storage_path} to {storage_path}",
                    storage_path=storage_path,
                    retryable=False,
                )
            file = await self.tree.replace_content(sess, file, len(content), mime_type)
            return file_to_info(file)

    async def get_folder(
        self,
        folder_id: str,
        *,
        user_id: str | None = None,
        share_token: str | None = None,
        share_password: str | None = None,
    ) -> FolderInfo:
        async with self._session() as sess:
            folder, _ = await self.permissions.require(
                sess,
                ResourceType.FOLDER,
                folder_id,
                AccessLevel.READ,
                user_id=user_id,
                share_token=share_token,
                share_password=share_password,
            )
            return folder_to_info(folder)

    async def get_file(
        self,
        file_id: str,
        *,
        user_id: str | None = None,
        share_token: str | None = None,
        share_password: str | None = None,
    ) -> FileInfo:
        async with self._session() as sess:
            file, _ = await self.permissions.require(
                sess,
                ResourceType.FILE,
                file_id,
                AccessLevel.READ,
                user_id=user_id,
                share_token=share_token,
                share_password=share_password,
            )
            return file_to_info(file)

    async def get_children(
        self,
        folder_id: str | None = None,
        *,
        user_id: str | None = None,
        share_token: str | None = None,
        share_password: str | None = None,
    ) -> ChildrenResult:
        """List a folder's live children; ``folder_id=None`` lists the caller's root."""
        async with self._session() as sess:
            if folder_id is None:
                if user_id is None:
                    raise NotFoundError("Root folder not found")
                owner_id = user_id
            else:
                folder, _ = await self.permissions.require(
                    sess,
                    ResourceType.FOLDER,
                    folder_id,
                    AccessLevel.READ,
                    user_id=user_id,
                    share_token=share_token,
                    share_password=share_password,
                )
                owner_id = folder.owner_id
            folders, files = await self.tree.get_children(sess, owner_id, folder_id)
            return ChildrenResult(
                folder_id=folder_id,
                folders=[folder_to_info(f) for f in folders],
                files=[file_to_info(f) for f in files],
            )

    async def get_tree(self, user_id: str, folder_id: str | None = None) -> TreeResult:
        """List every live folder and file below *folder_id* in the caller's tree."""
        async with self._session() as sess:
            if folder_id is not None:
                await self.tree.require_folder(sess, user_id, folder_id)
            folders, files = await self.tree.collect_subtree(
                sess, user_id, folder_id, include_deleted=False
            )
            return TreeResult(
                folder_id=folder_id,
                folders=[folder_to_info(f) for f in folders],
                files=[file_to_info(f) for f in files],
            )

    async def get_path(self, user_id: str, folder_id: str) -> list[FolderInfo]:
        """Breadcrumbs from the root down to *folder_id* in the caller's tree."""
        async with self._session() as sess:
            chain = await self.tree.get_path(sess, user_id, folder_id)
            return [folder_to_info(f) for f in chain]

    async def rename_folder(
        self,
        folder_id: str,
        new_name: str,
        *,
        user_id: str | None = None,
        share_token: str | None = None,
        share_password: str | None = None,
    ) -> FolderInfo:
        async with self._session() as sess:
            folder, _ = await self.permissions.require(
                sess,
                ResourceType.FOLDER,
                folder_id,
                AccessLevel.WRITE,
                user_id=user_id,
                share_token=share_token,
                share_password=share_password,
            )
            folder = await self.tree.rename_folder(sess, folder.owner_id, folder_id, new_name)
            return folder_to_info(folder)

    async def rename_file(
        self,
        file_id: str,
        new_name: str,
        *,
        user_id: str | None = None,
        share_token: str | None = None,
        share_password: str | None = None,
    ) -> FileInfo:
        async with self._session() as sess:
            file, _ = await self.permissions.require(
                sess,
                ResourceType.FILE,
                file_id,
                AccessLevel.WRITE,
                user_id=user_id,
                share_token=share_token,
                share_password=share_password,
            )
            file = await self.tree.rename_file(sess, file.owner_id, file_id, new_name)
            return file_to_info(file)

    async def _require_destination(
        self,
        sess: AsyncSession,
        owner_id: str,
        folder_id: str | None,
        *,
        user_id: str | None,
        share_token: str | None,
        share_password: str | None,
    ) -> None:
        """A move target must be the owner's root or a writable folder of the owner."""
        if folder_id is None or user_id == owner_id:
            return
        try:
            target, _ = await self.permissions.require(
                sess,
                ResourceType.FOLDER,
                folder_id,
                AccessLevel.WRITE,
                user_id=user_id,
                share_token=share_token,
                share_password=share_password,
            )
        except NotFoundError:
            raise InvalidParentError(f"Parent folder not found: {folder_id}") from None
        if target.owner_id != owner_id:
            raise InvalidParentError(f"Parent folder not found: {folder_id}")

    async def move_folder(
        self,
        folder_id: str,
        new_parent_id: str | None,
        *,
        user_id: str | None = None,
        share_token: str | None = None,
        share_password: str | None = None,
    ) -> FolderInfo:
        async with self._session() as sess:
            folder, _ = await self.permissions.require(
                sess,
                ResourceType.FOLDER,
                folder_id,
                AccessLevel.WRITE,
                user_id=user_id,
                share_token=share_token,
                share_password=share_password,
            )
            await self._require_destination(
                sess,
                folder.owner_id,
                new_parent_id,
                user_id=user_id,
                share_token=share_token,
                share_password=share_password,
            )
            folder = await self.tree.move_folder(sess, folder.owner_id, folder_id, new_parent_id)
            return folder_to_info(folder)

    async def move_file(
        self,
        file_id: str,
        new_folder_id: str | None,
        *,
        user_id: str | None = None,
        share_token: str | None = None,
        share_password: str | None = None,
    ) -> FileInfo:
        async with self._session() as sess:
            file, _ = await self.permissions.require(
                sess,
                ResourceType.FILE,
                file_id,
                AccessLevel.WRITE,
                user_id=user_id,
                share_token=share_token,
                share_password=share_password,
            )
            await self._require_destination(
                sess,
                file.owner_id,
                new_folder_id,
                user_id=user_id,
                share_token=share_token,
                share_password=share_password,
            )
            file = await self.tree.move_file(sess, file.owner_id, file_id, new_folder_id)
            return file_to_info(file)

    # ------------------------------------------------------------------
    # Content (blob store)
    # ------------------------------------------------------------------

    async def read_file_content(
        self,
        file_id: str,
        *,
        user_id: str | None = None,
        share_token: str | None = None,
        share_password: str | None = None,
    ) -> bytes:
        async with self._session() as sess:
            file, _ = await self.permissions.require(
                sess,
                ResourceType.FILE,
                file_id,
                AccessLevel.READ,
                user_id=user_id,
                share_token=share_token,
                share_password=share_password,
            )
            storage_path = file.storage_path
        return await self._blob_store.get(storage_path)

    async def get_download_url(
        self,
        file_id: str,
        *,
        mode: UrlMode | str = UrlMode.ATTACHMENT,
        ttl: int | None = None,
        user_id: str | None = None,
        share_token: str | None = None,
        share_password: str | None = None,
    ) -> str:
        """Return a time-limited URL for a file's bytes."""
        async with self._session() as sess:
            file, _ = await self.permissions.require(
                sess,
                ResourceType.FILE,
                file_id,
                AccessLevel.READ,
                user_id=user_id,
                share_token=share_token,
                share_password=share_password,
            )
            storage_path = file.storage_path
        return await self._blob_store.sign_url(
            storage_path, UrlMode(mode), ttl or self.config.signed_url_ttl
        )

    # ------------------------------------------------------------------
    # Trash
    # ------------------------------------------------------------------

    async def soft_delete(
        self,
        resource_type: ResourceType | str,
        resource_id: str,
        *,
        user_id: str,
    ) -> int:
        """Move a resource (and, for folders, its whole subtree) to the owner's trash.

        Returns the number of records marked deleted.
        """
        resource_type = ResourceType(resource_type)
        async with self._session() as sess:
            try:
                async with self.trash.savepoint(sess):
                    resource, _ = await self.permissions.require(
                        sess, resource_type, resource_id, AccessLevel.ADMIN, user_id=user_id
                    )
                owner_id = resource.owner_id
            except DBAPIError as e:
                if not is_missing_column_error(e):
                    raise
                owner_id = await self._owner_without_trash_columns(
                    sess, resource_type, resource_id, user_id
                )
            return await self.trash.soft_delete(sess, owner_id, resource_type, resource_id)

    async def _owner_without_trash_columns(
        self,
        sess: AsyncSession,
        resource_type: ResourceType,
        resource_id: str,
        user_id: str,
    ) -> str:
        """Admin check on a table without the soft-delete columns."""
        owner_id = await self.tree.find_owner(sess, resource_type, resource_id)
        if owner_id is None:
            raise NotFoundError(f"{resource_type.value.capitalize()} not found: {resource_id}")
        await self.permissions.check_level(
            sess, resource_type, resource_id, owner_id, AccessLevel.ADMIN, user_id=user_id
        )
        return owner_id

    async def restore(
        self,
        resource_type: ResourceType | str,
        resource_id: str,
        *,
        user_id: str,
        cascade: bool | None = None,
    ) -> FolderInfo | FileInfo:
        """Take a resource out of the trash. Owner only."""
        resource_type = ResourceType(resource_type)
        async with self._session() as sess:
            await self.permissions.require(
                sess,
                resource_type,
                resource_id,
                AccessLevel.OWNER,
                user_id=user_id,
                include_deleted=True,
            )
            record = await self.trash.restore(
                sess, user_id, resource_type, resource_id, cascade=cascade
            )
            if resource_type is ResourceType.FOLDER:
                return folder_to_info(record)  # type: ignore[arg-type]
            return file_to_info(record)  # type: ignore[arg-type]

    async def permanently_delete(
        self,
        resource_type: ResourceType | str,
        resource_id: str,
        *,
        user_id: str,
    ) -> PurgeResult:
        """Irreversibly delete a resource and its blobs. Owner only.

        Whatever could be purged is committed; if any blob could not be
        deleted, ``BlobStoreError`` is raised afterwards and the affected
        rows stay in the trash.
        """
        resource_type = ResourceType(resource_type)
        async with self._session() as sess:
            await self.permissions.require(
                sess,
                resource_type,
                resource_id,
                AccessLevel.OWNER,
                user_id=user_id,
                include_deleted=True,
            )
            result = await self.trash.permanently_delete(
                sess, user_id, resource_type, resource_id
            )
        self._raise_for_failed_blobs(result)
        return result

    async def list_trash(
        self,
        user_id: str,
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> TrashResult:
        limit = limit or self.config.trash_page_size
        async with self._session() as sess:
            files, folders = await self.trash.list_trash(
                sess, user_id, limit=limit, offset=offset
            )
            return TrashResult(
                files=[file_to_info(f) for f in files],
                folders=[folder_to_info(f) for f in folders],
                limit=limit,
                offset=offset,
            )

    async def empty_trash(self, user_id: str) -> PurgeResult:
        async with self._session() as sess:
            result = await self.trash.empty_trash(sess, user_id)
        self._raise_for_failed_blobs(result)
        return result

    @staticmethod
    def _raise_for_failed_blobs(result: PurgeResult) -> None:
        if result.complete:
            return
        raise BlobStoreError(
            f"Could not delete {len(result.failed_paths)} blob(s); "
            "their records were kept, retry the purge",
            storage_path=result.failed_paths[0],
            retryable=True,
        )

    # ------------------------------------------------------------------
    # Public shares
    # ------------------------------------------------------------------

    async def create_public_share(
        self,
        resource_type: ResourceType | str,
        resource_id: str,
        *,
        user_id: str,
        access_level: AccessLevel | str = AccessLevel.READ,
        expires_at: datetime | None = None,
        password: str | None = None,
    ) -> ShareInfo:
        resource_type = ResourceType(resource_type)
        async with self._session() as sess:
            await self.permissions.require(
                sess, resource_type, resource_id, AccessLevel.ADMIN, user_id=user_id
            )
            share = await self.sharing.create_share(
                sess,
                resource_type,
                resource_id,
                access_level,
                created_by=user_id,
                expires_at=expires_at,
                password=password,
            )
            return share_to_info(share)

    async def revoke_share(self, share_id: str, *, user_id: str) -> bool:
        """Revoke a share immediately. The token stops resolving at once."""
        async with self._session() as sess:
            share = await self.sharing.get_share(sess, share_id)
            if share is None:
                raise NotFoundError(f"Share not found: {share_id}")
            await self.permissions.require(
                sess,
                ResourceType(share.resource_type),
                share.resource_id,
                AccessLevel.ADMIN,
                user_id=user_id,
                include_deleted=True,
            )
            return await self.sharing.revoke_share(sess, share_id)

    async def update_share(
        self,
        share_id: str,
        *,
        user_id: str,
        access_level: AccessLevel | str | None = None,
        expires_at: datetime | None | Unset = UNSET,
        password: str | None | Unset = UNSET,
    ) -> ShareInfo:
        """Change a share's level, expiry, or password without re-minting its token.

        Omitted arguments are left alone; ``None`` clears the expiry or
        the password.
        """
        async with self._session() as sess:
            share = await self.sharing.get_share(sess, share_id)
            if share is None:
                raise NotFoundError(f"Share not found: {share_id}")
            await self.permissions.require(
                sess,
                ResourceType(share.resource_type),
                share.resource_id,
                AccessLevel.ADMIN,
                user_id=user_id,
            )
            share = await self.sharing.update_share(
                sess,
                share_id,
                access_level=access_level,
                expires_at=expires_at,
                password=password,
            )
            return share_to_info(share)

    async def resolve_share(self, token: str, *, password: str | None = None) -> ResolvedShare:
        """Return what *token* grants.

        Raises ``ExpiredError`` (a ``NotFoundError``) after expiry and
        ``NotFoundError`` for unknown tokens or trashed resources.
        """
        async with self._session() as sess:
            share = await self.sharing.resolve_share(sess, token, password=password)
            resource_type = ResourceType(share.resource_type)
            resource = await self.permissions.get_resource(sess, resource_type, share.resource_id)
            if resource is None:
                raise NotFoundError("Share not found")
            return ResolvedShare(
                share_id=share.id,
                resource_id=share.resource_id,
                resource_type=resource_type,
                access_level=AccessLevel(share.access_level),
                expires_at=share.expires_at,
            )

    async def list_shares(
        self,
        resource_type: ResourceType | str,
        resource_id: str,
        *,
        user_id: str,
    ) -> list[ShareInfo]:
        resource_type = ResourceType(resource_type)
        async with self._session() as sess:
            await self.permissions.require(
                sess, resource_type, resource_id, AccessLevel.ADMIN, user_id=user_id
            )
            shares = await self.sharing.list_shares(sess, resource_type, resource_id)
            return [share_to_info(s) for s in shares]

    # ------------------------------------------------------------------
    # User grants
    # ------------------------------------------------------------------

    async def grant_user_permission(
        self,
        resource_type: ResourceType | str,
        resource_id: str,
        grantee_email: str,
        level: AccessLevel | str,
        *,
        user_id: str,
        expires_at: datetime | None = None,
    ) -> PermissionInfo:
        """Grant *grantee_email* a level on a resource, replacing any earlier grant."""
        resource_type = ResourceType(resource_type)
        async with self._session() as sess:
            resource, _ = await self.permissions.require(
                sess, resource_type, resource_id, AccessLevel.ADMIN, user_id=user_id
            )
            grantee = await self._user_directory.get_by_email(sess, grantee_email)
            if grantee is None:
                raise UserNotFoundError(f"No user with email {grantee_email!r}")
            if grantee.id == resource.owner_id:
                raise ValueError("The owner already has full access")
            if grantee.id == user_id:
                raise ValueError("Cannot change your own access level")
            grant = await self.sharing.grant_permission(
                sess,
                resource_type,
                resource_id,
                grantee.id,
                level,
                granted_by=user_id,
                expires_at=expires_at,
            )
            return permission_to_info(grant)

    async def revoke_user_permission(
        self,
        resource_type: ResourceType | str,
        resource_id: str,
        grantee_id: str,
        *,
        user_id: str,
    ) -> bool:
        resource_type = ResourceType(resource_type)
        async with self._session() as sess:
            await self.permissions.require(
                sess,
                resource_type,
                resource_id,
                AccessLevel.ADMIN,
                user_id=user_id,
                include_deleted=True,
            )
            return await self.sharing.revoke_permission(
                sess, resource_type, resource_id, grantee_id
            )

    async def list_permissions(
        self,
        resource_type: ResourceType | str,
        resource_id: str,
        *,
        user_id: str,
    ) -> list[PermissionInfo]:
        resource_type = ResourceType(resource_type)
        async with self._session() as sess:
            await self.permissions.require(
                sess, resource_type, resource_id, AccessLevel.ADMIN, user_id=user_id
            )
            grants = await self.sharing.list_permissions(sess, resource_type, resource_id)
            return [permission_to_info(g) for g in grants]

    async def list_shared_with_me(self, user_id: str) -> list[PermissionInfo]:
        """Live grants held by *user_id* on resources that are not in the trash."""
        async with self._session() as sess:
            grants = await self.sharing.list_shared_with(sess, user_id)
            visible: list[PermissionInfo] = []
            for grant in grants:
                resource = await self.permissions.get_resource(
                    sess, ResourceType(grant.resource_type), grant.resource_id
                )
                if resource is not None:
                    visible.append(permission_to_info(grant))
            return visible

    # ------------------------------------------------------------------
    # Storage accounting
    # ------------------------------------------------------------------

    async def get_storage_usage(self, user_id: str) -> UsageInfo:
        async with self._session() as sess:
            return usage_to_info(await self.accounting.get_usage(sess, user_id))

    async def recompute_storage_usage(self, user_id: str) -> UsageInfo:
        async with self._session() as sess:
            return usage_to_info(await self.accounting.recompute(sess, user_id))

    def __repr__(self) -> str:
        state: dict[str, Any] = {"dialect": self.dialect, "closed": self._closed}
        return f"DriveAsync({', '.join(f'{k}={v!r}' for k, v in state.items())})"
