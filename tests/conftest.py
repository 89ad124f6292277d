"""Shared fixtures for canopy tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import Session, SQLModel, create_engine

from canopy._drive_async import DriveAsync
from canopy.config import DriveConfig
from canopy.exceptions import BlobStoreError
from canopy.models import File, Folder, ResourcePermission, Share, StorageUsage
from canopy.store.accounting import StorageAccountingService
from canopy.store.blobs import LocalDiskBlobStore
from canopy.store.permissions import PermissionEngine
from canopy.store.sharing import SharingService
from canopy.store.trash import TrashService
from canopy.store.tree import TreeService

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator
    from pathlib import Path

    from sqlalchemy import Engine
    from sqlalchemy.ext.asyncio import AsyncEngine


class FlakyBlobStore(LocalDiskBlobStore):
    """Local blob store whose deletes can be made to fail per path."""

    def __init__(self, root: Path | str) -> None:
        super().__init__(root, base_url="https://blobs.test", signing_key=b"k" * 32)
        self.fail_paths: set[str] = set()
        self.fail_once: set[str] = set()
        self.delete_calls: list[str] = []

    async def delete(self, storage_path: str) -> None:
        self.delete_calls.append(storage_path)
        if storage_path in self.fail_once:
            self.fail_once.discard(storage_path)
            raise BlobStoreError("transient failure", storage_path=storage_path)
        if storage_path in self.fail_paths:
            raise BlobStoreError("blob store unavailable", storage_path=storage_path)
        await super().delete(storage_path)


@pytest.fixture
def config() -> DriveConfig:
    """Fast bcrypt and no retry sleeps."""
    return DriveConfig(password_hash_rounds=4, blob_retry_delay=0)


@pytest.fixture
def blob_store(tmp_path: Path) -> FlakyBlobStore:
    root = tmp_path / "blobs"
    root.mkdir()
    return FlakyBlobStore(root)


@pytest.fixture
def engine() -> Engine:
    """In-memory SQLite engine with all tables created."""
    eng = create_engine("sqlite://", echo=False)
    SQLModel.metadata.create_all(eng)
    return eng


@pytest.fixture
def session(engine: Engine) -> Iterator[Session]:
    """SQLModel session bound to the in-memory engine, rolled back after each test."""
    with Session(engine) as s:
        yield s
        s.rollback()


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine with all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def async_session(async_engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Async SQLModel session, rolled back after each test."""
    factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def accounting() -> StorageAccountingService:
    return StorageAccountingService(File, StorageUsage)


@pytest.fixture
def tree(accounting: StorageAccountingService, config: DriveConfig) -> TreeService:
    return TreeService(Folder, File, accounting, config)


@pytest.fixture
def sharing(config: DriveConfig) -> SharingService:
    return SharingService(Share, ResourcePermission, config=config)


@pytest.fixture
def permissions(tree: TreeService, sharing: SharingService) -> PermissionEngine:
    return PermissionEngine(tree, sharing)


@pytest.fixture
def trash(
    tree: TreeService,
    accounting: StorageAccountingService,
    sharing: SharingService,
    blob_store: FlakyBlobStore,
    config: DriveConfig,
) -> TrashService:
    return TrashService(tree, accounting, sharing, blob_store, config)


@pytest.fixture
async def drive(
    async_engine: AsyncEngine, blob_store: FlakyBlobStore, config: DriveConfig
) -> AsyncIterator[DriveAsync]:
    d = DriveAsync(async_engine, blob_store=blob_store, config=config)
    yield d
    await d.close()
