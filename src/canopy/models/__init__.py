"""SQLModel database models for canopy."""

from canopy.models.files import File, FileBase
from canopy.models.folders import Folder, FolderBase
from canopy.models.permissions import ResourcePermission, ResourcePermissionBase
from canopy.models.shares import Share, ShareBase
from canopy.models.usage import StorageUsage, StorageUsageBase
from canopy.models.users import User, UserBase

__all__ = [
    "File",
    "FileBase",
    "Folder",
    "FolderBase",
    "ResourcePermission",
    "ResourcePermissionBase",
    "Share",
    "ShareBase",
    "StorageUsage",
    "StorageUsageBase",
    "User",
    "UserBase",
]
