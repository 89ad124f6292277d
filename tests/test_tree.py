"""Tests for TreeService — creation, sibling names, walks, rename and move."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from canopy.config import DriveConfig
from canopy.exceptions import (
    CorruptTreeError,
    CycleError,
    DuplicateNameError,
    InvalidNameError,
    InvalidParentError,
    NotFoundError,
)
from canopy.models import File, Folder
from canopy.store.tree import TreeService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from canopy.store.accounting import StorageAccountingService


async def _file(tree: TreeService, session: AsyncSession, owner: str, name: str, **kw):
    return await tree.create_file(session, owner, name, f"{owner}/{name}", **kw)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


class TestCreateFolder:
    async def test_root_folder(self, tree: TreeService, async_session: AsyncSession):
        folder = await tree.create_folder(async_session, "alice", "Docs")
        assert folder.id
        assert folder.name == "Docs"
        assert folder.owner_id == "alice"
        assert folder.parent_id is None
        assert folder.is_deleted is False

    async def test_nested_folder(self, tree: TreeService, async_session: AsyncSession):
        docs = await tree.create_folder(async_session, "alice", "Docs")
        sub = await tree.create_folder(async_session, "alice", "2024", docs.id)
        assert sub.parent_id == docs.id

    async def test_name_is_stripped(self, tree: TreeService, async_session: AsyncSession):
        folder = await tree.create_folder(async_session, "alice", "  Docs  ")
        assert folder.name == "Docs"

    @pytest.mark.parametrize("name", ["", "   ", ".", "..", "a/b", "a\\b"])
    async def test_invalid_names(
        self, tree: TreeService, async_session: AsyncSession, name: str
    ):
        with pytest.raises(InvalidNameError):
            await tree.create_folder(async_session, "alice", name)

    async def test_name_too_long(self, tree: TreeService, async_session: AsyncSession):
        with pytest.raises(InvalidNameError):
            await tree.create_folder(async_session, "alice", "x" * 256)

    async def test_missing_parent(self, tree: TreeService, async_session: AsyncSession):
        with pytest.raises(InvalidParentError):
            await tree.create_folder(async_session, "alice", "Docs", "no-such-folder")

    async def test_parent_of_other_owner(
        self, tree: TreeService, async_session: AsyncSession
    ):
        bobs = await tree.create_folder(async_session, "bob", "Private")
        with pytest.raises(InvalidParentError):
            await tree.create_folder(async_session, "alice", "Sneaky", bobs.id)


class TestSiblingNames:
    async def test_duplicate_folder(self, tree: TreeService, async_session: AsyncSession):
        await tree.create_folder(async_session, "alice", "Docs")
        with pytest.raises(DuplicateNameError):
            await tree.create_folder(async_session, "alice", "Docs")

    async def test_duplicate_is_case_insensitive(
        self, tree: TreeService, async_session: AsyncSession
    ):
        await tree.create_folder(async_session, "alice", "Docs")
        with pytest.raises(DuplicateNameError):
            await tree.create_folder(async_session, "alice", "docs")

    async def test_case_sensitive_config(
        self, accounting: StorageAccountingService, async_session: AsyncSession
    ):
        tree = TreeService(
            Folder, File, accounting, DriveConfig(case_insensitive_names=False)
        )
        await tree.create_folder(async_session, "alice", "Docs")
        other = await tree.create_folder(async_session, "alice", "docs")
        assert other.name == "docs"

    async def test_same_name_different_parent(
        self, tree: TreeService, async_session: AsyncSession
    ):
        a = await tree.create_folder(async_session, "alice", "A")
        b = await tree.create_folder(async_session, "alice", "B")
        await tree.create_folder(async_session, "alice", "Notes", a.id)
        notes = await tree.create_folder(async_session, "alice", "Notes", b.id)
        assert notes.parent_id == b.id

    async def test_same_name_different_owner(
        self, tree: TreeService, async_session: AsyncSession
    ):
        await tree.create_folder(async_session, "alice", "Docs")
        bobs = await tree.create_folder(async_session, "bob", "Docs")
        assert bobs.owner_id == "bob"

    async def test_file_and_folder_may_share_name(
        self, tree: TreeService, async_session: AsyncSession
    ):
        await tree.create_folder(async_session, "alice", "report")
        file = await _file(tree, async_session, "alice", "report")
        assert file.name == "report"

    async def test_duplicate_file(self, tree: TreeService, async_session: AsyncSession):
        await _file(tree, async_session, "alice", "a.pdf")
        with pytest.raises(DuplicateNameError):
            await tree.create_file(async_session, "alice", "A.PDF", "alice/other")

    async def test_deleted_sibling_does_not_collide(
        self, tree: TreeService, async_session: AsyncSession
    ):
        old = await tree.create_folder(async_session, "alice", "Docs")
        old.is_deleted = True
        await async_session.flush()
        fresh = await tree.create_folder(async_session, "alice", "Docs")
        assert fresh.id != old.id


class TestCreateFile:
    async def test_create_file(self, tree: TreeService, async_session: AsyncSession):
        docs = await tree.create_folder(async_session, "alice", "Docs")
        file = await tree.create_file(
            async_session, "alice", "a.pdf", "alice/a.pdf",
            folder_id=docs.id, size=500, mime_type="application/pdf",
        )
        assert file.folder_id == docs.id
        assert file.size == 500
        assert file.mime_type == "application/pdf"
        assert file.version == 1

    async def test_create_file_updates_usage(
        self,
        tree: TreeService,
        accounting: StorageAccountingService,
        async_session: AsyncSession,
    ):
        await _file(tree, async_session, "alice", "a.bin", size=100)
        await _file(tree, async_session, "alice", "b.bin", size=50)
        usage = await accounting.get_usage(async_session, "alice")
        assert usage.total_size == 150
        assert usage.file_count == 2

    async def test_default_mime_type(self, tree: TreeService, async_session: AsyncSession):
        file = await _file(tree, async_session, "alice", "blob")
        assert file.mime_type == "application/octet-stream"

    async def test_negative_size(self, tree: TreeService, async_session: AsyncSession):
        with pytest.raises(ValueError, match="Invalid size"):
            await _file(tree, async_session, "alice", "a.bin", size=-1)

    async def test_storage_path_required(
        self, tree: TreeService, async_session: AsyncSession
    ):
        with pytest.raises(ValueError, match="storage_path"):
            await tree.create_file(async_session, "alice", "a.bin", "")

    async def test_replace_content(
        self,
        tree: TreeService,
        accounting: StorageAccountingService,
        async_session: AsyncSession,
    ):
        file = await _file(tree, async_session, "alice", "a.txt", size=10)
        file = await tree.replace_content(async_session, file, 25)
        assert file.version == 2
        assert file.size == 25
        usage = await accounting.get_usage(async_session, "alice")
        assert usage.total_size == 25


# ---------------------------------------------------------------------------
# Lookups and listing
# ---------------------------------------------------------------------------


class TestLookups:
    async def test_get_folder_scoped_by_owner(
        self, tree: TreeService, async_session: AsyncSession
    ):
        folder = await tree.create_folder(async_session, "alice", "Docs")
        assert await tree.get_folder(async_session, "alice", folder.id) is not None
        assert await tree.get_folder(async_session, "bob", folder.id) is None

    async def test_require_file_missing(
        self, tree: TreeService, async_session: AsyncSession
    ):
        with pytest.raises(NotFoundError):
            await tree.require_file(async_session, "alice", "nope")

    async def test_deleted_hidden_by_default(
        self, tree: TreeService, async_session: AsyncSession
    ):
        folder = await tree.create_folder(async_session, "alice", "Docs")
        folder.is_deleted = True
        await async_session.flush()
        assert await tree.get_folder(async_session, "alice", folder.id) is None
        found = await tree.get_folder(async_session, "alice", folder.id, include_deleted=True)
        assert found is not None

    async def test_find_folder_is_unscoped(
        self, tree: TreeService, async_session: AsyncSession
    ):
        folder = await tree.create_folder(async_session, "alice", "Docs")
        found = await tree.find_folder(async_session, folder.id)
        assert found is not None
        assert found.owner_id == "alice"


class TestChildren:
    async def test_root_children(self, tree: TreeService, async_session: AsyncSession):
        await tree.create_folder(async_session, "alice", "b")
        await tree.create_folder(async_session, "alice", "a")
        await _file(tree, async_session, "alice", "z.txt")
        await tree.create_folder(async_session, "bob", "theirs")
        folders, files = await tree.get_children(async_session, "alice")
        assert [f.name for f in folders] == ["a", "b"]
        assert [f.name for f in files] == ["z.txt"]

    async def test_children_exclude_deleted(
        self, tree: TreeService, async_session: AsyncSession
    ):
        docs = await tree.create_folder(async_session, "alice", "Docs")
        gone = await _file(tree, async_session, "alice", "gone.txt", folder_id=docs.id)
        await _file(tree, async_session, "alice", "kept.txt", folder_id=docs.id)
        gone.is_deleted = True
        await async_session.flush()
        _, files = await tree.get_children(async_session, "alice", docs.id)
        assert [f.name for f in files] == ["kept.txt"]

    async def test_children_of_missing_folder(
        self, tree: TreeService, async_session: AsyncSession
    ):
        with pytest.raises(NotFoundError):
            await tree.get_children(async_session, "alice", "nope")


class TestSubtreeAndAncestors:
    async def test_collect_subtree(self, tree: TreeService, async_session: AsyncSession):
        a = await tree.create_folder(async_session, "alice", "A")
        b = await tree.create_folder(async_session, "alice", "B", a.id)
        c = await tree.create_folder(async_session, "alice", "C", b.id)
        await _file(tree, async_session, "alice", "1.txt", folder_id=a.id)
        await _file(tree, async_session, "alice", "2.txt", folder_id=c.id)
        folders, files = await tree.collect_subtree(async_session, "alice", a.id)
        assert [f.id for f in folders] == [b.id, c.id]
        assert sorted(f.name for f in files) == ["1.txt", "2.txt"]

    async def test_collect_from_root(self, tree: TreeService, async_session: AsyncSession):
        a = await tree.create_folder(async_session, "alice", "A")
        await tree.create_folder(async_session, "alice", "B", a.id)
        await _file(tree, async_session, "alice", "top.txt")
        folders, files = await tree.collect_subtree(async_session, "alice", None)
        assert len(folders) == 2
        assert len(files) == 1

    async def test_depth_bound(
        self, accounting: StorageAccountingService, async_session: AsyncSession
    ):
        tree = TreeService(Folder, File, accounting, DriveConfig(max_tree_depth=2))
        a = await tree.create_folder(async_session, "alice", "A")
        b = await tree.create_folder(async_session, "alice", "B", a.id)
        c = await tree.create_folder(async_session, "alice", "C", b.id)
        await tree.create_folder(async_session, "alice", "D", c.id)
        with pytest.raises(CorruptTreeError):
            await tree.collect_subtree(async_session, "alice", a.id)

    async def test_cycle_in_stored_data(
        self, tree: TreeService, async_session: AsyncSession
    ):
        a = await tree.create_folder(async_session, "alice", "A")
        b = await tree.create_folder(async_session, "alice", "B", a.id)
        a.parent_id = b.id
        await async_session.flush()
        with pytest.raises(CorruptTreeError):
            await tree.ancestors(async_session, "alice", b.id)
        with pytest.raises(CorruptTreeError):
            await tree.collect_subtree(async_session, "alice", a.id)

    async def test_dangling_parent(self, tree: TreeService, async_session: AsyncSession):
        a = await tree.create_folder(async_session, "alice", "A")
        a.parent_id = "vanished"
        await async_session.flush()
        with pytest.raises(CorruptTreeError):
            await tree.ancestors(async_session, "alice", a.id)

    async def test_collect_wide_folder_in_small_chunks(
        self,
        tree: TreeService,
        async_session: AsyncSession,
        monkeypatch: pytest.MonkeyPatch,
    ):
        monkeypatch.setattr("canopy.store.utils.MAX_BIND_PARAMS", 2)
        top = await tree.create_folder(async_session, "alice", "Top")
        subs = [
            await tree.create_folder(async_session, "alice", f"s{i}", top.id) for i in range(5)
        ]
        for i, sub in enumerate(subs):
            await _file(tree, async_session, "alice", f"{i}.txt", folder_id=sub.id)
        folders, files = await tree.collect_subtree(async_session, "alice", top.id)
        assert {f.id for f in folders} == {s.id for s in subs}
        assert len(files) == 5
        folder_rows, file_rows = await tree.collect_subtree_rows(async_session, "alice", top.id)
        assert {row[1] for row in folder_rows} == {top.id}
        assert {row[1] for row in file_rows} == {s.id for s in subs}

    async def test_get_path(self, tree: TreeService, async_session: AsyncSession):
        a = await tree.create_folder(async_session, "alice", "A")
        b = await tree.create_folder(async_session, "alice", "B", a.id)
        c = await tree.create_folder(async_session, "alice", "C", b.id)
        path = await tree.get_path(async_session, "alice", c.id)
        assert [f.name for f in path] == ["A", "B", "C"]


# ---------------------------------------------------------------------------
# Rename and move
# ---------------------------------------------------------------------------


class TestRename:
    async def test_rename_folder(self, tree: TreeService, async_session: AsyncSession):
        folder = await tree.create_folder(async_session, "alice", "Docs")
        renamed = await tree.rename_folder(async_session, "alice", folder.id, "Papers")
        assert renamed.name == "Papers"

    async def test_rename_to_same_name_other_case(
        self, tree: TreeService, async_session: AsyncSession
    ):
        folder = await tree.create_folder(async_session, "alice", "Docs")
        renamed = await tree.rename_folder(async_session, "alice", folder.id, "DOCS")
        assert renamed.name == "DOCS"

    async def test_rename_collision(self, tree: TreeService, async_session: AsyncSession):
        await _file(tree, async_session, "alice", "a.txt")
        b = await _file(tree, async_session, "alice", "b.txt")
        with pytest.raises(DuplicateNameError):
            await tree.rename_file(async_session, "alice", b.id, "a.txt")

    async def test_rename_other_owner(self, tree: TreeService, async_session: AsyncSession):
        folder = await tree.create_folder(async_session, "alice", "Docs")
        with pytest.raises(NotFoundError):
            await tree.rename_folder(async_session, "bob", folder.id, "Mine")


class TestMove:
    async def test_move_folder(self, tree: TreeService, async_session: AsyncSession):
        a = await tree.create_folder(async_session, "alice", "A")
        b = await tree.create_folder(async_session, "alice", "B")
        moved = await tree.move_folder(async_session, "alice", b.id, a.id)
        assert moved.parent_id == a.id

    async def test_move_to_root(self, tree: TreeService, async_session: AsyncSession):
        a = await tree.create_folder(async_session, "alice", "A")
        b = await tree.create_folder(async_session, "alice", "B", a.id)
        moved = await tree.move_folder(async_session, "alice", b.id, None)
        assert moved.parent_id is None

    async def test_move_into_self(self, tree: TreeService, async_session: AsyncSession):
        a = await tree.create_folder(async_session, "alice", "A")
        with pytest.raises(CycleError):
            await tree.move_folder(async_session, "alice", a.id, a.id)

    async def test_move_into_descendant(
        self, tree: TreeService, async_session: AsyncSession
    ):
        a = await tree.create_folder(async_session, "alice", "A")
        b = await tree.create_folder(async_session, "alice", "B", a.id)
        c = await tree.create_folder(async_session, "alice", "C", b.id)
        with pytest.raises(CycleError):
            await tree.move_folder(async_session, "alice", a.id, c.id)
        refreshed = await tree.require_folder(async_session, "alice", a.id)
        assert refreshed.parent_id is None

    async def test_move_name_collision(
        self, tree: TreeService, async_session: AsyncSession
    ):
        a = await tree.create_folder(async_session, "alice", "A")
        await tree.create_folder(async_session, "alice", "Notes", a.id)
        notes = await tree.create_folder(async_session, "alice", "Notes")
        with pytest.raises(DuplicateNameError):
            await tree.move_folder(async_session, "alice", notes.id, a.id)

    async def test_move_file(self, tree: TreeService, async_session: AsyncSession):
        docs = await tree.create_folder(async_session, "alice", "Docs")
        file = await _file(tree, async_session, "alice", "a.pdf")
        moved = await tree.move_file(async_session, "alice", file.id, docs.id)
        assert moved.folder_id == docs.id

    async def test_move_file_to_other_owner(
        self, tree: TreeService, async_session: AsyncSession
    ):
        bobs = await tree.create_folder(async_session, "bob", "Inbox")
        file = await _file(tree, async_session, "alice", "a.pdf")
        with pytest.raises(InvalidParentError):
            await tree.move_file(async_session, "alice", file.id, bobs.id)

    async def test_move_into_deleted_folder(
        self, tree: TreeService, async_session: AsyncSession
    ):
        docs = await tree.create_folder(async_session, "alice", "Docs")
        docs.is_deleted = True
        await async_session.flush()
        file = await _file(tree, async_session, "alice", "a.pdf")
        with pytest.raises(InvalidParentError):
            await tree.move_file(async_session, "alice", file.id, docs.id)


class TestParentLocking:
    @pytest.fixture
    def locked_lookups(self, tree: TreeService, monkeypatch: pytest.MonkeyPatch) -> list:
        calls = []
        original = tree.get_folder

        async def _spy(session, owner_id, folder_id, **kw):
            calls.append((folder_id, kw.get("for_update", False)))
            return await original(session, owner_id, folder_id, **kw)

        monkeypatch.setattr(tree, "get_folder", _spy)
        return calls

    async def test_create_folder_locks_parent(
        self, tree: TreeService, async_session: AsyncSession, locked_lookups: list
    ):
        docs = await tree.create_folder(async_session, "alice", "Docs")
        await tree.create_folder(async_session, "alice", "Sub", docs.id)
        assert (docs.id, True) in locked_lookups

    async def test_create_file_locks_parent(
        self, tree: TreeService, async_session: AsyncSession, locked_lookups: list
    ):
        docs = await tree.create_folder(async_session, "alice", "Docs")
        await _file(tree, async_session, "alice", "a.pdf", folder_id=docs.id)
        assert (docs.id, True) in locked_lookups

    async def test_moves_lock_target(
        self, tree: TreeService, async_session: AsyncSession, locked_lookups: list
    ):
        target = await tree.create_folder(async_session, "alice", "Target")
        other = await tree.create_folder(async_session, "alice", "Other")
        file = await _file(tree, async_session, "alice", "a.pdf")
        locked_lookups.clear()
        await tree.move_folder(async_session, "alice", other.id, target.id)
        await tree.move_file(async_session, "alice", file.id, target.id)
        assert locked_lookups.count((target.id, True)) == 2
