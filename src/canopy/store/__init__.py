"""Storage core — tree store, permissions, trash, sharing, accounting."""

from canopy.store.accounting import StorageAccountingService
from canopy.store.blobs import LocalDiskBlobStore
from canopy.store.identity import AuthenticatedUser, DatabaseUserDirectory
from canopy.store.permissions import PermissionEngine
from canopy.store.protocol import BlobStore, UserDirectory
from canopy.store.sharing import SharingService
from canopy.store.trash import TrashService
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

__all__ = [
    "AccessLevel",
    "AuthenticatedUser",
    "BlobStore",
    "ChildrenResult",
    "DatabaseUserDirectory",
    "FileInfo",
    "FolderInfo",
    "LocalDiskBlobStore",
    "PermissionEngine",
    "PermissionInfo",
    "PurgeResult",
    "ResolvedShare",
    "ResourceType",
    "ShareInfo",
    "SharingService",
    "StorageAccountingService",
    "TrashResult",
    "TrashService",
    "TreeResult",
    "TreeService",
    "UrlMode",
    "UsageInfo",
    "UserDirectory",
]
