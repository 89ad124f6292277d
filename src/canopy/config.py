"""DriveConfig — tunables shared by every service."""

from __future__ import annotations

from dataclasses import dataclass

MIN_SHARE_TOKEN_BYTES = 16


@dataclass
class DriveConfig:
    """Configuration for a drive facade and the services it composes."""

    max_tree_depth: int = 1000
    """Upper bound on any ancestor or descendant walk."""

    cascade_restore: bool = False
    """Restore descendants removed in the same delete event along with a folder."""

    case_insensitive_names: bool = True
    """Treat ``Docs`` and ``docs`` as the same sibling name."""

    max_name_length: int = 255

    blob_retry_attempts: int = 3
    """Attempts per blob deletion before the purge gives up on that blob."""

    blob_retry_delay: float = 0.1
    """Delay before the second attempt, in seconds; doubled after each failure."""

    share_token_bytes: int = 32
    """Random bytes behind each share token."""

    trash_page_size: int = 100

    signed_url_ttl: int = 3600
    """Default lifetime of signed download URLs, in seconds."""

    password_hash_rounds: int = 12
    """bcrypt cost factor for share passwords."""

    def __post_init__(self) -> None:
        if self.max_tree_depth < 1:
            raise ValueError("max_tree_depth must be at least 1")
        if self.blob_retry_attempts < 1:
            raise ValueError("blob_retry_attempts must be at least 1")
        if self.share_token_bytes < MIN_SHARE_TOKEN_BYTES:
            raise ValueError(
                f"share_token_bytes must be at least {MIN_SHARE_TOKEN_BYTES}"
            )
        if not 4 <= self.password_hash_rounds <= 31:
            raise ValueError("password_hash_rounds must be between 4 and 31")
