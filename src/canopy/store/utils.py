"""Name validation and timestamp helpers."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from datetime import UTC, datetime
from typing import TypeVar

from canopy.exceptions import InvalidNameError

_ILLEGAL_CHARS = ("/", "\\", "\0")

# Ids bound per IN (...) clause; SQLite caps bound parameters per statement
MAX_BIND_PARAMS = 500

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def is_expired(expires_at: datetime | None, now: datetime | None = None) -> bool:
    """True when *expires_at* is set and not in the future."""
    if expires_at is None:
        return False
    return as_utc(expires_at) <= (now or utcnow())


def validate_name(name: str, max_length: int = 255) -> str:
    """Return the stripped name or raise ``InvalidNameError``."""
    if not isinstance(name, str):
        raise InvalidNameError("Name must be a string")
    cleaned = name.strip()
    if not cleaned:
        raise InvalidNameError("Name cannot be empty")
    if cleaned in (".", ".."):
        raise InvalidNameError(f"Reserved name: {cleaned!r}")
    for char in _ILLEGAL_CHARS:
        if char in cleaned:
            raise InvalidNameError(f"Name contains an illegal character: {cleaned!r}")
    if len(cleaned) > max_length:
        raise InvalidNameError(f"Name is longer than {max_length} characters")
    return cleaned


def chunked(items: Sequence[T], size: int | None = None) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of *items*, at most ``MAX_BIND_PARAMS`` long."""
    size = size or MAX_BIND_PARAMS
    for start in range(0, len(items), size):
        yield items[start : start + size]
