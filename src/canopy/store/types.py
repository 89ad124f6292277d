"""Access levels, resource kinds, and result types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime


class ResourceType(str, Enum):
    """Kind of tree node a grant or share points at."""

    FILE = "file"
    FOLDER = "folder"


class AccessLevel(str, Enum):
    """Access level with a total order: read < write < admin < owner.

    ``OWNER`` is never stored; it is the implicit level of a resource's owner.
    """

    READ = "read"
    WRITE = "write"
    ADMIN = "admin"
    OWNER = "owner"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    def satisfies(self, required: AccessLevel) -> bool:
        """True when this level is at least *required*."""
        return self.rank >= required.rank

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.rank >= other.rank


_RANKS = {
    AccessLevel.READ: 1,
    AccessLevel.WRITE: 2,
    AccessLevel.ADMIN: 3,
    AccessLevel.OWNER: 4,
}

GRANTABLE_LEVELS = frozenset({AccessLevel.READ, AccessLevel.WRITE, AccessLevel.ADMIN})
SHAREABLE_LEVELS = frozenset({AccessLevel.READ, AccessLevel.WRITE})


@dataclass
class FolderInfo:
    """Folder metadata."""

    id: str
    name: str
    owner_id: str
    parent_id: str | None = None
    is_deleted: bool = False
    deleted_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class FileInfo:
    """File metadata."""

    id: str
    name: str
    owner_id: str
    folder_id: str | None = None
    size: int = 0
    mime_type: str | None = None
    storage_path: str | None = None
    version: int = 1
    is_deleted: bool = False
    deleted_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class ChildrenResult:
    """Direct children of one folder (or of an owner's root)."""

    folder_id: str | None
    folders: list[FolderInfo] = field(default_factory=list)
    files: list[FileInfo] = field(default_factory=list)


@dataclass
class TreeResult:
    """Every non-deleted node below a folder (or an owner's root)."""

    folder_id: str | None
    folders: list[FolderInfo] = field(default_factory=list)
    files: list[FileInfo] = field(default_factory=list)

    @property
    def total_folders(self) -> int:
        return len(self.folders)

    @property
    def total_files(self) -> int:
        return len(self.files)


@dataclass
class TrashResult:
    """Soft-deleted records of one owner, newest deletion first."""

    files: list[FileInfo] = field(default_factory=list)
    folders: list[FolderInfo] = field(default_factory=list)
    limit: int = 100
    offset: int = 0


@dataclass
class PurgeResult:
    """Outcome of a permanent delete."""

    deleted_files: int = 0
    deleted_folders: int = 0
    failed_paths: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed_paths


@dataclass
class ShareInfo:
    """Public share metadata. The password hash is never exposed."""

    id: str
    resource_id: str
    resource_type: ResourceType
    token: str
    access_level: AccessLevel
    created_by: str
    password_protected: bool = False
    expires_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class PermissionInfo:
    """Explicit grant metadata."""

    id: str
    user_id: str
    resource_id: str
    resource_type: ResourceType
    level: AccessLevel
    granted_by: str
    created_at: datetime | None = None
    expires_at: datetime | None = None


@dataclass
class ResolvedShare:
    """What a share token grants access to."""

    share_id: str
    resource_id: str
    resource_type: ResourceType
    access_level: AccessLevel
    expires_at: datetime | None = None


@dataclass
class UsageInfo:
    """Cached storage totals for one user."""

    user_id: str
    total_size: int = 0
    file_count: int = 0
    last_calculated: datetime | None = None


class UrlMode(str, Enum):
    """How a signed URL asks the client to treat the content."""

    INLINE = "inline"
    ATTACHMENT = "attachment"
