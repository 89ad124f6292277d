"""Drive — synchronous facade over DriveAsync."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Any

from canopy._drive_async import DriveAsync

if TYPE_CHECKING:
    from datetime import datetime

    from canopy.config import DriveConfig
    from canopy.store.identity import AuthenticatedUser
    from canopy.store.protocol import BlobStore, UserDirectory
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

logger = logging.getLogger(__name__)


class Drive:
    """Blocking API backed by a private event loop in a background thread.

    Every method mirrors the :class:`DriveAsync` method of the same name.

    Usage::

        with Drive("sqlite+aiosqlite:///drive.db", blob_store=store) as drive:
            docs = drive.create_folder("alice", "Docs")
            drive.upload_file("alice", "a.pdf", data, folder_id=docs.id)
    """

    def __init__(
        self,
        url: str,
        *,
        blob_store: BlobStore,
        user_directory: UserDirectory | None = None,
        config: DriveConfig | None = None,
        create_tables: bool = True,
    ) -> None:
        self._closed = False

        # Private event loop in a daemon thread
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, daemon=True)
        self._thread.start()

        try:
            self._async: DriveAsync = self._run(
                self._async_init(url, blob_store, user_directory, config, create_tables)
            )
        except Exception:
            self._stop_loop()
            raise

    async def _async_init(
        self,
        url: str,
        blob_store: BlobStore,
        user_directory: UserDirectory | None,
        config: DriveConfig | None,
        create_tables: bool,
    ) -> DriveAsync:
        drive = DriveAsync.from_url(
            url, blob_store=blob_store, user_directory=user_directory, config=config
        )
        if create_tables:
            try:
                await drive.create_tables()
            except Exception:
                await drive.close()
                raise
        return drive

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _run(self, coro: Any) -> Any:
        """Submit *coro* to the private loop and block for the result."""
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    def _stop_loop(self) -> None:
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5)

    @property
    def async_drive(self) -> DriveAsync:
        """The underlying async facade, bound to the private loop."""
        return self._async

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Dispose the engine, stop the event loop and join the thread."""
        if self._closed:
            return
        self._closed = True
        try:
            self._run(self._async.close())
        finally:
            self._stop_loop()

    def __enter__(self) -> Drive:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def sync_user(self, user: AuthenticatedUser) -> AuthenticatedUser:
        return self._run(self._async.sync_user(user))

    # ------------------------------------------------------------------
    # Tree store
    # ------------------------------------------------------------------

    def create_folder(
        self, user_id: str, name: str, parent_id: str | None = None
    ) -> FolderInfo:
        return self._run(self._async.create_folder(user_id, name, parent_id))

    def create_file(
        self,
        user_id: str,
        name: str,
        storage_path: str,
        *,
        folder_id: str | None = None,
        size: int = 0,
        mime_type: str | None = None,
    ) -> FileInfo:
        return self._run(
            self._async.create_file(
                user_id, name, storage_path,
                folder_id=folder_id, size=size, mime_type=mime_type,
            )
        )

    def upload_file(
        self,
        user_id: str,
        name: str,
        content: bytes,
        *,
        folder_id: str | None = None,
        mime_type: str | None = None,
    ) -> FileInfo:
        return self._run(
            self._async.upload_file(
                user_id, name, content, folder_id=folder_id, mime_type=mime_type
            )
        )

    def upload_new_version(self, file_id: str, content: bytes, **kwargs: Any) -> FileInfo:
        return self._run(self._async.upload_new_version(file_id, content, **kwargs))

    def get_folder(self, folder_id: str, **credentials: Any) -> FolderInfo:
        return self._run(self._async.get_folder(folder_id, **credentials))

    def get_file(self, file_id: str, **credentials: Any) -> FileInfo:
        return self._run(self._async.get_file(file_id, **credentials))

    def get_children(self, folder_id: str | None = None, **credentials: Any) -> ChildrenResult:
        return self._run(self._async.get_children(folder_id, **credentials))

    def get_tree(self, user_id: str, folder_id: str | None = None) -> TreeResult:
        return self._run(self._async.get_tree(user_id, folder_id))

    def get_path(self, user_id: str, folder_id: str) -> list[FolderInfo]:
        return self._run(self._async.get_path(user_id, folder_id))

    def rename_folder(self, folder_id: str, new_name: str, **credentials: Any) -> FolderInfo:
        return self._run(self._async.rename_folder(folder_id, new_name, **credentials))

    def rename_file(self, file_id: str, new_name: str, **credentials: Any) -> FileInfo:
        return self._run(self._async.rename_file(file_id, new_name, **credentials))

    def move_folder(
        self, folder_id: str, new_parent_id: str | None, **credentials: Any
    ) -> FolderInfo:
        return self._run(self._async.move_folder(folder_id, new_parent_id, **credentials))

    def move_file(
        self, file_id: str, new_folder_id: str | None, **credentials: Any
    ) -> FileInfo:
        return self._run(self._async.move_file(file_id, new_folder_id, **credentials))

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def read_file_content(self, file_id: str, **credentials: Any) -> bytes:
        return self._run(self._async.read_file_content(file_id, **credentials))

    def get_download_url(
        self,
        file_id: str,
        *,
        mode: UrlMode | str = "attachment",
        ttl: int | None = None,
        **credentials: Any,
    ) -> str:
        return self._run(
            self._async.get_download_url(file_id, mode=mode, ttl=ttl, **credentials)
        )

    # ------------------------------------------------------------------
    # Trash
    # ------------------------------------------------------------------

    def soft_delete(
        self, resource_type: ResourceType | str, resource_id: str, *, user_id: str
    ) -> int:
        return self._run(self._async.soft_delete(resource_type, resource_id, user_id=user_id))

    def restore(
        self,
        resource_type: ResourceType | str,
        resource_id: str,
        *,
        user_id: str,
        cascade: bool | None = None,
    ) -> FolderInfo | FileInfo:
        return self._run(
            self._async.restore(resource_type, resource_id, user_id=user_id, cascade=cascade)
        )

    def permanently_delete(
        self, resource_type: ResourceType | str, resource_id: str, *, user_id: str
    ) -> PurgeResult:
        return self._run(
            self._async.permanently_delete(resource_type, resource_id, user_id=user_id)
        )

    def list_trash(
        self, user_id: str, *, limit: int | None = None, offset: int = 0
    ) -> TrashResult:
        return self._run(self._async.list_trash(user_id, limit=limit, offset=offset))

    def empty_trash(self, user_id: str) -> PurgeResult:
        return self._run(self._async.empty_trash(user_id))

    # ------------------------------------------------------------------
    # Sharing
    # ------------------------------------------------------------------

    def create_public_share(
        self,
        resource_type: ResourceType | str,
        resource_id: str,
        *,
        user_id: str,
        access_level: AccessLevel | str = "read",
        expires_at: datetime | None = None,
        password: str | None = None,
    ) -> ShareInfo:
        return self._run(
            self._async.create_public_share(
                resource_type, resource_id,
                user_id=user_id, access_level=access_level,
                expires_at=expires_at, password=password,
            )
        )

    def revoke_share(self, share_id: str, *, user_id: str) -> bool:
        return self._run(self._async.revoke_share(share_id, user_id=user_id))

    def update_share(self, share_id: str, *, user_id: str, **changes: Any) -> ShareInfo:
        return self._run(self._async.update_share(share_id, user_id=user_id, **changes))

    def resolve_share(self, token: str, *, password: str | None = None) -> ResolvedShare:
        return self._run(self._async.resolve_share(token, password=password))

    def list_shares(
        self, resource_type: ResourceType | str, resource_id: str, *, user_id: str
    ) -> list[ShareInfo]:
        return self._run(self._async.list_shares(resource_type, resource_id, user_id=user_id))

    def grant_user_permission(
        self,
        resource_type: ResourceType | str,
        resource_id: str,
        grantee_email: str,
        level: AccessLevel | str,
        *,
        user_id: str,
        expires_at: datetime | None = None,
    ) -> PermissionInfo:
        return self._run(
            self._async.grant_user_permission(
                resource_type, resource_id, grantee_email, level,
                user_id=user_id, expires_at=expires_at,
            )
        )

    def revoke_user_permission(
        self,
        resource_type: ResourceType | str,
        resource_id: str,
        grantee_id: str,
        *,
        user_id: str,
    ) -> bool:
        return self._run(
            self._async.revoke_user_permission(
                resource_type, resource_id, grantee_id, user_id=user_id
            )
        )

    def list_permissions(
        self, resource_type: ResourceType | str, resource_id: str, *, user_id: str
    ) -> list[PermissionInfo]:
        return self._run(
            self._async.list_permissions(resource_type, resource_id, user_id=user_id)
        )

    def list_shared_with_me(self, user_id: str) -> list[PermissionInfo]:
        return self._run(self._async.list_shared_with_me(user_id))

    # ------------------------------------------------------------------
    # Storage accounting
    # ------------------------------------------------------------------

    def get_storage_usage(self, user_id: str) -> UsageInfo:
        return self._run(self._async.get_storage_usage(user_id))

    def recompute_storage_usage(self, user_id: str) -> UsageInfo:
        return self._run(self._async.recompute_storage_usage(user_id))
