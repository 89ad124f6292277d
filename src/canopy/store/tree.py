"""TreeService — folder/file records, sibling names, and tree walks.

Stateless service that receives the concrete models at construction
and a session at call time.  Every lookup is scoped by ``owner_id`` so
one owner's ids never resolve inside another owner's tree.  Callers
run each public operation inside a single transaction; nothing here
commits.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import func
from sqlmodel import select

from canopy.config import DriveConfig
from canopy.exceptions import (
    CorruptTreeError,
    CycleError,
    DuplicateNameError,
    InvalidParentError,
    NotFoundError,
)

from .types import ResourceType
from .utils import chunked, utcnow, validate_name

if TYPE_CHECKING:
    from sqlalchemy import Row
    from sqlalchemy.ext.asyncio import AsyncSession

    from canopy.models.files import FileBase
    from canopy.models.folders import FolderBase

    from .accounting import StorageAccountingService

logger = logging.getLogger(__name__)


class TreeService:
    """Atomic create/read/rename/move primitives over one owner's tree.

    File creation and content replacement trigger a storage accounting
    recompute in the same session.
    """

    def __init__(
        self,
        folder_model: type[FolderBase],
        file_model: type[FileBase],
        accounting: StorageAccountingService,
        config: DriveConfig | None = None,
    ) -> None:
        self._folder_model = folder_model
        self._file_model = file_model
        self._accounting = accounting
        self.config = config or DriveConfig()

    @property
    def folder_model(self) -> type[FolderBase]:
        return self._folder_model

    @property
    def file_model(self) -> type[FileBase]:
        return self._file_model

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def find_folder(
        self,
        session: AsyncSession,
        folder_id: str,
        *,
        include_deleted: bool = False,
    ) -> FolderBase | None:
        """Unscoped lookup, used to discover a folder's owner before access checks."""
        model = self._folder_model
        query = select(model).where(model.id == folder_id)
        if not include_deleted:
            query = query.where(model.is_deleted.is_(False))  # type: ignore[union-attr]
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def find_file(
        self,
        session: AsyncSession,
        file_id: str,
        *,
        include_deleted: bool = False,
    ) -> FileBase | None:
        """Unscoped lookup, used to discover a file's owner before access checks."""
        model = self._file_model
        query = select(model).where(model.id == file_id)
        if not include_deleted:
            query = query.where(model.is_deleted.is_(False))  # type: ignore[union-attr]
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def get_folder(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str,
        *,
        include_deleted: bool = False,
        for_update: bool = False,
    ) -> FolderBase | None:
        """Get a folder record by ``(owner_id, id)``."""
        model = self._folder_model
        query = select(model).where(model.id == folder_id, model.owner_id == owner_id)
        if not include_deleted:
            query = query.where(model.is_deleted.is_(False))  # type: ignore[union-attr]
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def get_file(
        self,
        session: AsyncSession,
        owner_id: str,
        file_id: str,
        *,
        include_deleted: bool = False,
        for_update: bool = False,
    ) -> FileBase | None:
        """Get a file record by ``(owner_id, id)``."""
        model = self._file_model
        query = select(model).where(model.id == file_id, model.owner_id == owner_id)
        if not include_deleted:
            query = query.where(model.is_deleted.is_(False))  # type: ignore[union-attr]
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def require_folder(
        self, session: AsyncSession, owner_id: str, folder_id: str, **kwargs: Any
    ) -> FolderBase:
        folder = await self.get_folder(session, owner_id, folder_id, **kwargs)
        if folder is None:
            raise NotFoundError(f"Folder not found: {folder_id}")
        return folder

    async def require_file(
        self, session: AsyncSession, owner_id: str, file_id: str, **kwargs: Any
    ) -> FileBase:
        file = await self.get_file(session, owner_id, file_id, **kwargs)
        if file is None:
            raise NotFoundError(f"File not found: {file_id}")
        return file

    async def find_owner(
        self,
        session: AsyncSession,
        resource_type: ResourceType,
        resource_id: str,
    ) -> str | None:
        """Owner of a folder or file, trashed or not.

        Reads only ``id`` and ``owner_id``, so it works on tables that lack
        the soft-delete columns.
        """
        if ResourceType(resource_type) is ResourceType.FOLDER:
            model: type[FolderBase] | type[FileBase] = self._folder_model
        else:
            model = self._file_model
        result = await session.execute(
            select(model.owner_id).where(model.id == resource_id)  # type: ignore[call-overload]
        )
        return result.scalar_one_or_none()

    async def lock_folders(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_ids: list[str],
    ) -> None:
        """Take row locks on *folder_ids* (a no-op on SQLite)."""
        fm = self._folder_model
        for chunk in chunked(folder_ids):
            await session.execute(
                select(fm.id)  # type: ignore[call-overload]
                .where(fm.owner_id == owner_id, fm.id.in_(chunk))  # type: ignore[union-attr]
                .with_for_update()
            )

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _clean_name(self, name: str) -> str:
        return validate_name(name, self.config.max_name_length)

    def _name_matches(self, column: Any, name: str) -> Any:
        if self.config.case_insensitive_names:
            return func.lower(column) == name.lower()
        return column == name

    async def _check_sibling_name(
        self,
        session: AsyncSession,
        model: type[FolderBase] | type[FileBase],
        owner_id: str,
        parent_id: str | None,
        name: str,
        exclude_id: str | None = None,
    ) -> None:
        """Raise ``DuplicateNameError`` if a non-deleted sibling already uses *name*.

        Folders collide with folders and files with files.
        """
        parent_col = model.parent_id if model is self._folder_model else model.folder_id  # type: ignore[union-attr]
        conditions = [
            model.owner_id == owner_id,
            model.is_deleted.is_(False),  # type: ignore[union-attr]
            self._name_matches(model.name, name),
            parent_col.is_(None) if parent_id is None else parent_col == parent_id,
        ]
        if exclude_id is not None:
            conditions.append(model.id != exclude_id)
        result = await session.execute(select(model.id).where(*conditions).limit(1))
        if result.first() is not None:
            kind = "folder" if model is self._folder_model else "file"
            raise DuplicateNameError(f"A {kind} named {name!r} already exists here")

    async def check_sibling_name(
        self,
        session: AsyncSession,
        record: FolderBase | FileBase,
    ) -> None:
        """Check *record*'s current name against its non-deleted siblings."""
        if isinstance(record, self._folder_model):
            await self._check_sibling_name(
                session, self._folder_model, record.owner_id, record.parent_id,
                record.name, exclude_id=record.id,
            )
        else:
            await self._check_sibling_name(
                session, self._file_model, record.owner_id, record.folder_id,  # type: ignore[union-attr]
                record.name, exclude_id=record.id,
            )

    async def _require_parent(
        self, session: AsyncSession, owner_id: str, parent_id: str | None
    ) -> FolderBase | None:
        """Resolve *parent_id* to a non-deleted folder of *owner_id*.

        The parent row stays locked until commit, so a concurrent soft
        delete of that folder waits for this transaction or is waited on.
        """
        if parent_id is None:
            return None
        parent = await self.get_folder(session, owner_id, parent_id, for_update=True)
        if parent is None:
            raise InvalidParentError(f"Parent folder not found: {parent_id}")
        return parent

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_folder(
        self,
        session: AsyncSession,
        owner_id: str,
        name: str,
        parent_id: str | None = None,
    ) -> FolderBase:
        """Create a folder. Flushes but does not commit."""
        name = self._clean_name(name)
        await self._require_parent(session, owner_id, parent_id)
        await self._check_sibling_name(
            session, self._folder_model, owner_id, parent_id, name
        )
        folder = self._folder_model(name=name, owner_id=owner_id, parent_id=parent_id)
        session.add(folder)
        await session.flush()
        logger.debug("Created folder %s (%r) for %s", folder.id, name, owner_id)
        return folder

    async def create_file(
        self,
        session: AsyncSession,
        owner_id: str,
        name: str,
        storage_path: str,
        *,
        folder_id: str | None = None,
        size: int = 0,
        mime_type: str | None = None,
    ) -> FileBase:
        """Create a file record and recompute the owner's usage. Flushes but does not commit."""
        name = self._clean_name(name)
        if size < 0:
            raise ValueError(f"Invalid size: {size}")
        if not storage_path:
            raise ValueError("storage_path is required")
        await self._require_parent(session, owner_id, folder_id)
        await self._check_sibling_name(session, self._file_model, owner_id, folder_id, name)

        values: dict[str, Any] = {
            "name": name,
            "owner_id": owner_id,
            "folder_id": folder_id,
            "size": size,
            "storage_path": storage_path,
        }
        if mime_type:
            values["mime_type"] = mime_type
        file = self._file_model(**values)
        session.add(file)
        await session.flush()
        await self._accounting.recompute(session, owner_id)
        logger.debug("Created file %s (%r, %d bytes) for %s", file.id, name, size, owner_id)
        return file

    async def replace_content(
        self,
        session: AsyncSession,
        file: FileBase,
        size: int,
        mime_type: str | None = None,
    ) -> FileBase:
        """Record a content replacement: new size, next version, same storage path."""
        if size < 0:
            raise ValueError(f"Invalid size: {size}")
        file.size = size
        if mime_type:
            file.mime_type = mime_type
        file.version += 1
        file.updated_at = utcnow()
        await session.flush()
        await self._accounting.recompute(session, file.owner_id)
        logger.debug("File %s now at version %d", file.id, file.version)
        return file

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def get_children(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str | None = None,
    ) -> tuple[list[FolderBase], list[FileBase]]:
        """Return the non-deleted direct children of *folder_id* (root when None)."""
        if folder_id is not None:
            await self.require_folder(session, owner_id, folder_id)

        fm = self._folder_model
        parent_cond = fm.parent_id.is_(None) if folder_id is None else fm.parent_id == folder_id  # type: ignore[union-attr]
        folders_result = await session.execute(
            select(fm)
            .where(fm.owner_id == owner_id, fm.is_deleted.is_(False), parent_cond)  # type: ignore[union-attr]
            .order_by(fm.name)
        )

        flm = self._file_model
        file_cond = flm.folder_id.is_(None) if folder_id is None else flm.folder_id == folder_id  # type: ignore[union-attr]
        files_result = await session.execute(
            select(flm)
            .where(flm.owner_id == owner_id, flm.is_deleted.is_(False), file_cond)  # type: ignore[union-attr]
            .order_by(flm.name)
        )
        return list(folders_result.scalars().all()), list(files_result.scalars().all())

    async def collect_subtree(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str | None,
        *,
        include_deleted: bool = True,
    ) -> tuple[list[FolderBase], list[FileBase]]:
        """Collect every folder and file below *folder_id*, breadth first.

        The starting folder itself is not included.  A revisit or a walk
        deeper than ``max_tree_depth`` raises ``CorruptTreeError``.
        """
        folder_rows, file_rows = await self._walk(
            session,
            owner_id,
            folder_id,
            (self._folder_model,),
            (self._file_model,),
            include_deleted=include_deleted,
        )
        return [row[1] for row in folder_rows], [row[1] for row in file_rows]

    async def collect_subtree_rows(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str,
    ) -> tuple[list[Row[Any]], list[Row[Any]]]:
        """Like ``collect_subtree`` but reads only structural columns.

        Folder rows are ``(id, parent_id)``, file rows are
        ``(id, folder_id, storage_path)``.  Deleted records are included
        and the soft-delete columns are never referenced.
        """
        fm = self._folder_model
        flm = self._file_model
        return await self._walk(
            session,
            owner_id,
            folder_id,
            (fm.parent_id,),
            (flm.folder_id, flm.storage_path),
            include_deleted=True,
        )

    async def _walk(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str | None,
        folder_columns: tuple[Any, ...],
        file_columns: tuple[Any, ...],
        *,
        include_deleted: bool,
    ) -> tuple[list[Row[Any]], list[Row[Any]]]:
        """Level-by-level worklist over the tree with a visited set.

        Every row starts with the record's ``id``, followed by the
        requested columns.
        """
        fm = self._folder_model
        flm = self._file_model
        folders: list[Row[Any]] = []
        files: list[Row[Any]] = []
        visited: set[str] = set()
        if folder_id is not None:
            visited.add(folder_id)

        frontier: list[str | None] = [folder_id]
        depth = 0
        while frontier:
            depth += 1
            if depth > self.config.max_tree_depth:
                raise CorruptTreeError(
                    f"Tree below {folder_id or 'root'} exceeds {self.config.max_tree_depth} levels"
                )

            folder_conds: list[Any] = [fm.owner_id == owner_id]
            file_conds: list[Any] = [flm.owner_id == owner_id]
            if not include_deleted:
                folder_conds.append(fm.is_deleted.is_(False))  # type: ignore[union-attr]
                file_conds.append(flm.is_deleted.is_(False))  # type: ignore[union-attr]

            if None in frontier:
                parent_filters = [(fm.parent_id.is_(None), flm.folder_id.is_(None))]  # type: ignore[union-attr]
            else:
                parent_filters = [
                    (fm.parent_id.in_(chunk), flm.folder_id.in_(chunk))  # type: ignore[union-attr]
                    for chunk in chunked(frontier)
                ]

            level_folders: list[Row[Any]] = []
            for folder_filter, file_filter in parent_filters:
                level_folders.extend(
                    (await session.execute(
                        select(fm.id, *folder_columns).where(*folder_conds, folder_filter)  # type: ignore[call-overload]
                    )).all()
                )
                files.extend(
                    (await session.execute(
                        select(flm.id, *file_columns).where(*file_conds, file_filter)  # type: ignore[call-overload]
                    )).all()
                )

            frontier = []
            for row in level_folders:
                child_id = row[0]
                if child_id in visited:
                    raise CorruptTreeError(f"Cycle detected at folder {child_id}")
                visited.add(child_id)
                folders.append(row)
                frontier.append(child_id)

        return folders, files

    # ------------------------------------------------------------------
    # Ancestors
    # ------------------------------------------------------------------

    async def ancestors(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str,
    ) -> list[FolderBase]:
        """Return the chain from *folder_id* up to its root-level ancestor.

        The first element is the folder itself.  Bounded by
        ``max_tree_depth``; a revisit, an over-long chain, or a dangling
        ``parent_id`` raises ``CorruptTreeError``.
        """
        chain: list[FolderBase] = []
        seen: set[str] = set()
        current: str | None = folder_id
        while current is not None:
            if current in seen:
                raise CorruptTreeError(f"Cycle detected at folder {current}")
            if len(chain) >= self.config.max_tree_depth:
                raise CorruptTreeError(
                    f"Folder {folder_id} is nested deeper than {self.config.max_tree_depth} levels"
                )
            seen.add(current)
            folder = await self.get_folder(session, owner_id, current, include_deleted=True)
            if folder is None:
                if not chain:
                    raise NotFoundError(f"Folder not found: {folder_id}")
                raise CorruptTreeError(f"Folder {chain[-1].id} has a dangling parent {current}")
            chain.append(folder)
            current = folder.parent_id
        return chain

    async def get_path(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str,
    ) -> list[FolderBase]:
        """Return the folders from the root down to *folder_id*."""
        await self.require_folder(session, owner_id, folder_id)
        chain = await self.ancestors(session, owner_id, folder_id)
        chain.reverse()
        return chain

    # ------------------------------------------------------------------
    # Rename
    # ------------------------------------------------------------------

    async def rename_folder(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str,
        new_name: str,
    ) -> FolderBase:
        new_name = self._clean_name(new_name)
        folder = await self.require_folder(session, owner_id, folder_id, for_update=True)
        await self._check_sibling_name(
            session, self._folder_model, owner_id, folder.parent_id, new_name,
            exclude_id=folder.id,
        )
        folder.name = new_name
        folder.updated_at = utcnow()
        await session.flush()
        logger.debug("Renamed folder %s to %r", folder_id, new_name)
        return folder

    async def rename_file(
        self,
        session: AsyncSession,
        owner_id: str,
        file_id: str,
        new_name: str,
    ) -> FileBase:
        new_name = self._clean_name(new_name)
        file = await self.require_file(session, owner_id, file_id, for_update=True)
        await self._check_sibling_name(
            session, self._file_model, owner_id, file.folder_id, new_name,
            exclude_id=file.id,
        )
        file.name = new_name
        file.updated_at = utcnow()
        await session.flush()
        logger.debug("Renamed file %s to %r", file_id, new_name)
        return file

    # ------------------------------------------------------------------
    # Move
    # ------------------------------------------------------------------

    async def move_folder(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str,
        new_parent_id: str | None,
    ) -> FolderBase:
        """Reparent a folder within its owner's tree.

        Rejects moves under the folder itself or any of its descendants
        by walking the destination's ancestors up to the root.
        """
        folder = await self.require_folder(session, owner_id, folder_id, for_update=True)
        if new_parent_id == folder.id:
            raise CycleError("A folder cannot be moved into itself")
        await self._require_parent(session, owner_id, new_parent_id)
        if new_parent_id is not None:
            chain = await self.ancestors(session, owner_id, new_parent_id)
            if any(f.id == folder.id for f in chain):
                raise CycleError(
                    f"Cannot move folder {folder_id} under its own descendant {new_parent_id}"
                )
        if new_parent_id == folder.parent_id:
            return folder
        await self._check_sibling_name(
            session, self._folder_model, owner_id, new_parent_id, folder.name,
            exclude_id=folder.id,
        )
        folder.parent_id = new_parent_id
        folder.updated_at = utcnow()
        await session.flush()
        logger.debug("Moved folder %s under %s", folder_id, new_parent_id or "root")
        return folder

    async def move_file(
        self,
        session: AsyncSession,
        owner_id: str,
        file_id: str,
        new_folder_id: str | None,
    ) -> FileBase:
        """Move a file to another folder of the same owner. Totals are unchanged."""
        file = await self.require_file(session, owner_id, file_id, for_update=True)
        await self._require_parent(session, owner_id, new_folder_id)
        if new_folder_id == file.folder_id:
            return file
        await self._check_sibling_name(
            session, self._file_model, owner_id, new_folder_id, file.name,
            exclude_id=file.id,
        )
        file.folder_id = new_folder_id
        file.updated_at = utcnow()
        await session.flush()
        logger.debug("Moved file %s to %s", file_id, new_folder_id or "root")
        return file
