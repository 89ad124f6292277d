"""TrashService — recursive soft delete, restore, and permanent purge."""

from __future__ import annotations

import asyncio
import logging
from contextlib import nullcontext
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, update
from sqlalchemy.exc import DBAPIError
from sqlmodel import select

from canopy.config import DriveConfig
from canopy.exceptions import (
    BlobStoreError,
    NotFoundError,
    NotInTrashError,
    OrphanedParentError,
)

from .types import PurgeResult, ResourceType
from .utils import as_utc, chunked, utcnow

if TYPE_CHECKING:
    from contextlib import AbstractAsyncContextManager
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from canopy.models.files import FileBase
    from canopy.models.folders import FolderBase

    from .accounting import StorageAccountingService
    from .protocol import BlobStore
    from .sharing import SharingService
    from .tree import TreeService

logger = logging.getLogger(__name__)

_MISSING_COLUMN_MARKERS = ("no such column", "invalid column name", "unknown column")


def is_missing_column_error(exc: DBAPIError) -> bool:
    """True when the database rejected a statement over an absent column."""
    message = str(exc.orig if exc.orig is not None else exc).lower()
    if any(marker in message for marker in _MISSING_COLUMN_MARKERS):
        return True
    return "column" in message and "does not exist" in message


class TrashService:
    """Trash management over the tree.

    Soft delete marks a whole subtree with one timestamp.  Restore is
    single-node unless ``cascade_restore`` is configured.  Purge deletes
    blobs before rows: a row is only removed once its blob is gone.
    """

    def __init__(
        self,
        tree: TreeService,
        accounting: StorageAccountingService,
        sharing: SharingService,
        blob_store: BlobStore,
        config: DriveConfig | None = None,
        dialect: str = "sqlite",
    ) -> None:
        self._tree = tree
        self._accounting = accounting
        self._sharing = sharing
        self._blob_store = blob_store
        self.config = config or DriveConfig()
        self.dialect = dialect

    # ------------------------------------------------------------------
    # Soft delete
    # ------------------------------------------------------------------

    def savepoint(self, session: AsyncSession) -> AbstractAsyncContextManager[Any]:
        """Guard a statement that may fail over missing soft-delete columns.

        A failed statement leaves an SQLite transaction usable; other
        dialects need a savepoint to carry on after it.
        """
        if self.dialect == "sqlite":
            return nullcontext()
        return session.begin_nested()

    async def soft_delete(
        self,
        session: AsyncSession,
        owner_id: str,
        resource_type: ResourceType,
        resource_id: str,
    ) -> int:
        """Move a file, or a folder with all its descendants, to the trash.

        Returns the number of records marked.  If the tables lack the
        soft-delete columns, the resource is permanently deleted instead.
        """
        try:
            async with self.savepoint(session):
                count = await self._mark_deleted(session, owner_id, resource_type, resource_id)
        except DBAPIError as e:
            if not is_missing_column_error(e):
                raise
            logger.warning(
                "Soft-delete columns missing; permanently deleting %s %s instead",
                ResourceType(resource_type).value,
                resource_id,
                exc_info=True,
            )
            result = await self.permanently_delete(
                session, owner_id, resource_type, resource_id, soft_delete_columns=False
            )
            if not result.complete:
                raise BlobStoreError(
                    f"Could not delete {len(result.failed_paths)} blob(s)",
                    storage_path=result.failed_paths[0],
                ) from e
            return result.deleted_files + result.deleted_folders
        await self._accounting.recompute(session, owner_id)
        return count

    async def _lock_subtree(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str,
    ) -> tuple[list[FolderBase], list[FileBase]]:
        """Lock every folder below *folder_id* and return the settled subtree.

        Creates and moves lock their target folder, so once every folder
        in the subtree is locked the walk can no longer change under us.
        """
        locked = {folder_id}
        while True:
            folders, files = await self._tree.collect_subtree(session, owner_id, folder_id)
            pending = [f.id for f in folders if f.id not in locked]
            if not pending:
                return folders, files
            await self._tree.lock_folders(session, owner_id, pending)
            locked.update(pending)

    async def _mark_deleted(
        self,
        session: AsyncSession,
        owner_id: str,
        resource_type: ResourceType,
        resource_id: str,
    ) -> int:
        now = utcnow()
        fm = self._tree.folder_model
        flm = self._tree.file_model

        if ResourceType(resource_type) is ResourceType.FILE:
            file = await self._tree.require_file(session, owner_id, resource_id, for_update=True)
            await session.execute(
                update(flm)
                .where(flm.id == file.id)
                .values(is_deleted=True, deleted_at=now, updated_at=now)
                .execution_options(synchronize_session="fetch")
            )
            logger.info("Moved file %s to trash", resource_id)
            return 1

        folder = await self._tree.require_folder(session, owner_id, resource_id, for_update=True)
        folders, files = await self._lock_subtree(session, owner_id, folder.id)
        folder_ids = [folder.id, *(f.id for f in folders)]
        file_ids = [f.id for f in files]

        for chunk in chunked(folder_ids):
            await session.execute(
                update(fm)
                .where(fm.owner_id == owner_id, fm.id.in_(chunk))  # type: ignore[union-attr]
                .values(is_deleted=True, deleted_at=now, updated_at=now)
                .execution_options(synchronize_session="fetch")
            )
        for chunk in chunked(file_ids):
            await session.execute(
                update(flm)
                .where(flm.owner_id == owner_id, flm.id.in_(chunk))  # type: ignore[union-attr]
                .values(is_deleted=True, deleted_at=now, updated_at=now)
                .execution_options(synchronize_session="fetch")
            )
        logger.info(
            "Moved folder %s to trash with %d folder(s) and %d file(s) below it",
            resource_id, len(folders), len(files),
        )
        return len(folder_ids) + len(file_ids)

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore(
        self,
        session: AsyncSession,
        owner_id: str,
        resource_type: ResourceType,
        resource_id: str,
        *,
        cascade: bool | None = None,
    ) -> FolderBase | FileBase:
        """Take one resource out of the trash.

        Fails with ``OrphanedParentError`` while the parent folder is still
        deleted, and with ``DuplicateNameError`` if a live sibling took the
        name in the meantime.  With *cascade* (default from config), a
        folder also brings back the descendants removed in the same
        delete event.
        """
        if cascade is None:
            cascade = self.config.cascade_restore
        is_folder = ResourceType(resource_type) is ResourceType.FOLDER

        record: FolderBase | FileBase | None
        if is_folder:
            record = await self._tree.get_folder(
                session, owner_id, resource_id, include_deleted=True, for_update=True
            )
        else:
            record = await self._tree.get_file(
                session, owner_id, resource_id, include_deleted=True, for_update=True
            )
        if record is None:
            raise NotFoundError(f"{ResourceType(resource_type).value.capitalize()} not found: {resource_id}")
        if not record.is_deleted:
            raise NotInTrashError(f"Not in trash: {resource_id}")

        parent_id = record.parent_id if is_folder else record.folder_id  # type: ignore[union-attr]
        if parent_id is not None:
            parent = await self._tree.get_folder(
                session, owner_id, parent_id, include_deleted=True
            )
            if parent is None or parent.is_deleted:
                raise OrphanedParentError(
                    f"Cannot restore {resource_id}: parent folder {parent_id} is deleted"
                )
        await self._tree.check_sibling_name(session, record)

        deleted_at = record.deleted_at
        self._undelete(record)
        restored = 1
        if is_folder and cascade and deleted_at is not None:
            restored += await self._restore_descendants(session, owner_id, record.id, deleted_at)
        await session.flush()
        await self._accounting.recompute(session, owner_id)
        logger.info("Restored %s %s (%d record(s))", ResourceType(resource_type).value, resource_id, restored)
        return record

    @staticmethod
    def _undelete(record: FolderBase | FileBase) -> None:
        record.is_deleted = False
        record.deleted_at = None
        record.updated_at = utcnow()

    async def _restore_descendants(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str,
        deleted_at: datetime,
    ) -> int:
        """Restore descendants stamped with *deleted_at* whose parent is back."""
        stamp = as_utc(deleted_at)
        folders, files = await self._tree.collect_subtree(session, owner_id, folder_id)
        live: set[str] = {folder_id}
        count = 0
        # collect_subtree is breadth first, so parents come before children
        for folder in folders:
            if (
                folder.is_deleted
                and folder.parent_id in live
                and folder.deleted_at is not None
                and as_utc(folder.deleted_at) == stamp
            ):
                self._undelete(folder)
                count += 1
            if not folder.is_deleted:
                live.add(folder.id)
        for file in files:
            if (
                file.is_deleted
                and file.folder_id in live
                and file.deleted_at is not None
                and as_utc(file.deleted_at) == stamp
            ):
                self._undelete(file)
                count += 1
        return count

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_trash(
        self,
        session: AsyncSession,
        owner_id: str,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[FileBase], list[FolderBase]]:
        """List soft-deleted files and folders of *owner_id*, newest first.

        Each list is paginated on its own; no tree walk is involved.
        """
        limit = max(1, limit)
        offset = max(0, offset)
        flm = self._tree.file_model
        fm = self._tree.folder_model
        files_result = await session.execute(
            select(flm)
            .where(flm.owner_id == owner_id, flm.is_deleted.is_(True))  # type: ignore[union-attr]
            .order_by(flm.deleted_at.desc(), flm.name)  # type: ignore[union-attr]
            .offset(offset)
            .limit(limit)
        )
        folders_result = await session.execute(
            select(fm)
            .where(fm.owner_id == owner_id, fm.is_deleted.is_(True))  # type: ignore[union-attr]
            .order_by(fm.deleted_at.desc(), fm.name)  # type: ignore[union-attr]
            .offset(offset)
            .limit(limit)
        )
        return list(files_result.scalars().all()), list(folders_result.scalars().all())

    # ------------------------------------------------------------------
    # Permanent delete
    # ------------------------------------------------------------------

    async def _delete_blob(self, storage_path: str) -> BlobStoreError | None:
        """Delete one blob with bounded retries. Returns the final error, if any."""
        attempts = self.config.blob_retry_attempts
        delay = self.config.blob_retry_delay
        error: BlobStoreError | None = None
        for attempt in range(1, attempts + 1):
            try:
                await self._blob_store.delete(storage_path)
                return None
            except BlobStoreError as e:
                error = e
            except (OSError, TimeoutError) as e:
                error = BlobStoreError(
                    f"Blob delete failed: {e}", storage_path=storage_path
                )
            if not error.retryable or attempt == attempts:
                break
            logger.warning(
                "Blob delete failed for %s (attempt %d/%d), retrying",
                storage_path, attempt, attempts,
            )
            await asyncio.sleep(delay * 2 ** (attempt - 1))
        logger.warning("Giving up on blob %s: %s", storage_path, error)
        return error

    async def permanently_delete(
        self,
        session: AsyncSession,
        owner_id: str,
        resource_type: ResourceType,
        resource_id: str,
        *,
        soft_delete_columns: bool = True,
    ) -> PurgeResult:
        """Irreversibly remove a resource and its blobs.

        Blobs go first.  A file whose blob could not be deleted keeps its
        row, and so does every folder above it; the rest of the purge
        proceeds.  Check ``PurgeResult.failed_paths``.

        Only structural columns are read and rows are removed with plain
        DELETE statements, so this also works on tables without the
        soft-delete columns (pass ``soft_delete_columns=False`` there so the
        usage recompute counts every remaining file).
        """
        result = PurgeResult()
        fm = self._tree.folder_model
        flm = self._tree.file_model

        if ResourceType(resource_type) is ResourceType.FILE:
            row = (
                await session.execute(
                    select(flm.storage_path)  # type: ignore[call-overload]
                    .where(flm.id == resource_id, flm.owner_id == owner_id)
                    .with_for_update()
                )
            ).first()
            if row is None:
                raise NotFoundError(f"File not found: {resource_id}")
            storage_path = row[0]
            error = await self._delete_blob(storage_path)
            if error is not None:
                result.failed_paths.append(storage_path)
                return result
            await self._sharing.delete_for_resources(session, ResourceType.FILE, [resource_id])
            await self._delete_rows(session, flm, owner_id, [resource_id])
            result.deleted_files = 1
            await self._accounting.recompute(session, owner_id, live_only=soft_delete_columns)
            logger.info("Permanently deleted file %s", resource_id)
            return result

        row = (
            await session.execute(
                select(fm.id)  # type: ignore[call-overload]
                .where(fm.id == resource_id, fm.owner_id == owner_id)
                .with_for_update()
            )
        ).first()
        if row is None:
            raise NotFoundError(f"Folder not found: {resource_id}")
        folder_rows, file_rows = await self._tree.collect_subtree_rows(
            session, owner_id, resource_id
        )
        parents: dict[str, str | None] = {fid: parent_id for fid, parent_id in folder_rows}

        purged: list[str] = []
        keep: set[str] = set()
        for file_id, folder_id, storage_path in file_rows:
            error = await self._delete_blob(storage_path)
            if error is None:
                purged.append(file_id)
                continue
            result.failed_paths.append(storage_path)
            # Keep the folder chain that still leads to this file
            current: str | None = folder_id
            while current is not None and current not in keep:
                keep.add(current)
                current = parents.get(current)

        await self._delete_rows(session, flm, owner_id, purged)
        # Deepest first, so no surviving row points at a removed parent
        doomed = [fid for fid, _ in reversed(folder_rows) if fid not in keep]
        if resource_id not in keep:
            doomed.append(resource_id)
        await self._delete_rows(session, fm, owner_id, doomed)

        await self._sharing.delete_for_resources(session, ResourceType.FILE, purged)
        await self._sharing.delete_for_resources(session, ResourceType.FOLDER, doomed)
        result.deleted_files = len(purged)
        result.deleted_folders = len(doomed)
        await self._accounting.recompute(session, owner_id, live_only=soft_delete_columns)
        logger.info(
            "Permanently deleted folder %s: %d folder(s), %d file(s), %d blob failure(s)",
            resource_id, result.deleted_folders, result.deleted_files, len(result.failed_paths),
        )
        return result

    @staticmethod
    async def _delete_rows(
        session: AsyncSession,
        model: type[FolderBase] | type[FileBase],
        owner_id: str,
        ids: list[str],
    ) -> None:
        for chunk in chunked(ids):
            await session.execute(
                delete(model)
                .where(model.owner_id == owner_id, model.id.in_(chunk))  # type: ignore[union-attr]
                .execution_options(synchronize_session="fetch")
            )

    async def empty_trash(self, session: AsyncSession, owner_id: str) -> PurgeResult:
        """Permanently delete everything in *owner_id*'s trash."""
        fm = self._tree.folder_model
        flm = self._tree.file_model
        total = PurgeResult()

        trashed = (
            await session.execute(
                select(fm.id, fm.parent_id).where(  # type: ignore[call-overload]
                    fm.owner_id == owner_id, fm.is_deleted.is_(True)  # type: ignore[union-attr]
                )
            )
        ).all()
        trashed_ids = {row[0] for row in trashed}
        for folder_id, parent_id in trashed:
            if parent_id in trashed_ids:
                continue
            self._merge(total, await self.permanently_delete(
                session, owner_id, ResourceType.FOLDER, folder_id
            ))

        file_ids = (
            await session.execute(
                select(flm.id).where(  # type: ignore[call-overload]
                    flm.owner_id == owner_id, flm.is_deleted.is_(True)  # type: ignore[union-attr]
                )
            )
        ).scalars().all()
        failed = set(total.failed_paths)
        for file_id in file_ids:
            file = await self._tree.get_file(session, owner_id, file_id, include_deleted=True)
            if file is None or file.storage_path in failed:
                continue
            self._merge(total, await self.permanently_delete(
                session, owner_id, ResourceType.FILE, file_id
            ))
        logger.info(
            "Emptied trash for %s: %d folder(s), %d file(s)",
            owner_id, total.deleted_folders, total.deleted_files,
        )
        return total

    @staticmethod
    def _merge(total: PurgeResult, part: PurgeResult) -> None:
        total.deleted_files += part.deleted_files
        total.deleted_folders += part.deleted_folders
        total.failed_paths.extend(part.failed_paths)
