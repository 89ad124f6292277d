"""Canopy: hierarchical file and folder storage.

Owner-scoped folder trees, permission checks, trash, public shares, and
storage accounting over a relational database and a blob store.
"""

__version__ = "0.1.0"

from canopy._drive import Drive
from canopy._drive_async import DriveAsync
from canopy.config import DriveConfig
from canopy.exceptions import (
    BlobStoreError,
    CanopyError,
    CorruptTreeError,
    CycleError,
    DuplicateNameError,
    ExpiredError,
    InvalidNameError,
    InvalidParentError,
    NotFoundError,
    NotInTrashError,
    OrphanedParentError,
    PermissionDeniedError,
    StorageError,
    UserNotFoundError,
)
from canopy.store import (
    AccessLevel,
    AuthenticatedUser,
    BlobStore,
    ChildrenResult,
    DatabaseUserDirectory,
    FileInfo,
    FolderInfo,
    LocalDiskBlobStore,
    PermissionInfo,
    PurgeResult,
    ResolvedShare,
    ResourceType,
    ShareInfo,
    TrashResult,
    TreeResult,
    UrlMode,
    UsageInfo,
    UserDirectory,
)

__all__ = [
    "AccessLevel",
    "AuthenticatedUser",
    "BlobStore",
    "BlobStoreError",
    "CanopyError",
    "ChildrenResult",
    "CorruptTreeError",
    "CycleError",
    "DatabaseUserDirectory",
    "Drive",
    "DriveAsync",
    "DriveConfig",
    "DuplicateNameError",
    "ExpiredError",
    "FileInfo",
    "FolderInfo",
    "InvalidNameError",
    "InvalidParentError",
    "LocalDiskBlobStore",
    "NotFoundError",
    "NotInTrashError",
    "OrphanedParentError",
    "PermissionDeniedError",
    "PermissionInfo",
    "PurgeResult",
    "ResolvedShare",
    "ResourceType",
    "ShareInfo",
    "StorageError",
    "TrashResult",
    "TreeResult",
    "UrlMode",
    "UsageInfo",
    "UserDirectory",
    "UserNotFoundError",
    "__version__",
]
