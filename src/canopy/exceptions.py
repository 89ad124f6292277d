"""Custom exception hierarchy for the canopy storage core."""


class CanopyError(Exception):
    """Base exception for all canopy errors."""


class NotFoundError(CanopyError, LookupError):
    """Raised when a resource is absent or not visible to the caller.

    Absent and invisible are deliberately merged so that callers without
    access cannot discover the existence of other users' resources.
    """


class ExpiredError(NotFoundError):
    """Raised when a share or grant exists but its ``expires_at`` has passed."""


class UserNotFoundError(NotFoundError):
    """Raised when an email or id does not resolve to a known user."""


class PermissionDeniedError(CanopyError, PermissionError):
    """Raised when the caller can see a resource but lacks the required level."""


class DuplicateNameError(CanopyError):
    """Raised when a sibling with the same name already exists."""


class InvalidNameError(CanopyError, ValueError):
    """Raised when a folder or file name is empty or contains illegal characters."""


class InvalidParentError(CanopyError):
    """Raised when a parent folder is missing, deleted, or owned by someone else."""


class CycleError(CanopyError):
    """Raised when a move would make a folder its own ancestor."""


class NotInTrashError(CanopyError):
    """Raised when restoring a resource that is not soft-deleted."""


class OrphanedParentError(CanopyError):
    """Raised when a restore is blocked because the parent folder is deleted."""


class CorruptTreeError(CanopyError):
    """Raised when a tree walk detects a cycle or exceeds the depth bound."""


class StorageError(CanopyError):
    """Raised on storage backend failures (DB connection, disk I/O, etc.)."""


class BlobStoreError(StorageError):
    """Raised when the blob store fails to put, get, delete, or sign a blob."""

    def __init__(
        self,
        message: str,
        *,
        storage_path: str | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message)
        self.storage_path = storage_path
        self.retryable = retryable
