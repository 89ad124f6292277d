"""Record-to-info conversion helpers."""

from __future__ import annotations

import mimetypes
from typing import TYPE_CHECKING

from .types import (
    AccessLevel,
    FileInfo,
    FolderInfo,
    PermissionInfo,
    ResourceType,
    ShareInfo,
    UsageInfo,
)

if TYPE_CHECKING:
    from canopy.models.files import FileBase
    from canopy.models.folders import FolderBase
    from canopy.models.permissions import ResourcePermissionBase
    from canopy.models.shares import ShareBase
    from canopy.models.usage import StorageUsageBase

DEFAULT_MIME_TYPE = "application/octet-stream"


def guess_mime_type(name: str) -> str:
    mime, _ = mimetypes.guess_type(name)
    return mime or DEFAULT_MIME_TYPE


def folder_to_info(f: FolderBase) -> FolderInfo:
    return FolderInfo(
        id=f.id,
        name=f.name,
        owner_id=f.owner_id,
        parent_id=f.parent_id,
        is_deleted=f.is_deleted,
        deleted_at=f.deleted_at,
        created_at=f.created_at,
        updated_at=f.updated_at,
    )


def file_to_info(f: FileBase) -> FileInfo:
    return FileInfo(
        id=f.id,
        name=f.name,
        owner_id=f.owner_id,
        folder_id=f.folder_id,
        size=f.size,
        mime_type=f.mime_type,
        storage_path=f.storage_path,
        version=f.version,
        is_deleted=f.is_deleted,
        deleted_at=f.deleted_at,
        created_at=f.created_at,
        updated_at=f.updated_at,
    )


def share_to_info(s: ShareBase) -> ShareInfo:
    return ShareInfo(
        id=s.id,
        resource_id=s.resource_id,
        resource_type=ResourceType(s.resource_type),
        token=s.token,
        access_level=AccessLevel(s.access_level),
        created_by=s.created_by,
        password_protected=s.password_hash is not None,
        expires_at=s.expires_at,
        created_at=s.created_at,
    )


def permission_to_info(p: ResourcePermissionBase) -> PermissionInfo:
    return PermissionInfo(
        id=p.id,
        user_id=p.user_id,
        resource_id=p.resource_id,
        resource_type=ResourceType(p.resource_type),
        level=AccessLevel(p.level),
        granted_by=p.granted_by,
        created_at=p.created_at,
        expires_at=p.expires_at,
    )


def usage_to_info(u: StorageUsageBase) -> UsageInfo:
    return UsageInfo(
        user_id=u.user_id,
        total_size=u.total_size,
        file_count=u.file_count,
        last_calculated=u.last_calculated,
    )
