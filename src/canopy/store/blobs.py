"""LocalDiskBlobStore — blob store adapter over a host directory."""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import hmac
import os
import secrets
import tempfile
import time
import uuid
from pathlib import Path, PurePosixPath
from urllib.parse import quote

from canopy.exceptions import BlobStoreError

from .types import UrlMode


class LocalDiskBlobStore:
    """Blob store that keeps each blob as a file under *root*.

    Implements the ``BlobStore`` protocol.  Storage paths are POSIX paths
    relative to *root*; ``_resolve`` keeps every access inside it.
    Signed URLs carry an HMAC-SHA256 signature over path, mode, and expiry.
    """

    def __init__(
        self,
        root: Path | str,
        *,
        base_url: str | None = None,
        signing_key: bytes | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self.base_url = (base_url or self.root.as_uri()).rstrip("/")
        self._signing_key = signing_key or secrets.token_bytes(32)

        if not self.root.exists():
            raise FileNotFoundError(f"Blob root does not exist: {self.root}")
        if not self.root.is_dir():
            raise NotADirectoryError(f"Blob root is not a directory: {self.root}")

    # =========================================================================
    # Path Resolution & Security
    # =========================================================================

    @staticmethod
    def _clean_hint(path_hint: str) -> str:
        parts = [
            p
            for p in PurePosixPath(path_hint.replace("\\", "/")).parts
            if p not in ("/", ".", "..", "")
        ]
        return "/".join(parts)

    def _resolve(self, storage_path: str) -> Path:
        """Map *storage_path* to a file under root, rejecting traversal."""
        rel = storage_path.lstrip("/")
        if not rel or "\0" in rel:
            raise BlobStoreError(
                f"Invalid storage path: {storage_path!r}",
                storage_path=storage_path,
                retryable=False,
            )
        resolved = (self.root / rel).resolve()
        try:
            resolved.relative_to(self.root)
        except ValueError:
            raise BlobStoreError(
                f"Path traversal detected: {storage_path!r} resolves outside blob root",
                storage_path=storage_path,
                retryable=False,
            ) from None
        return resolved

    # =========================================================================
    # BlobStore protocol
    # =========================================================================

    async def put(self, data: bytes, path_hint: str) -> str:
        """Write *data* at *path_hint* (a fresh name if empty). Atomic via tempfile + replace."""
        storage_path = self._clean_hint(path_hint) or uuid.uuid4().hex
        resolved = self._resolve(storage_path)

        def _write() -> None:
            resolved.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(resolved.parent), suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                Path(tmp_path).replace(resolved)
            except Exception:
                with contextlib.suppress(OSError):
                    Path(tmp_path).unlink()
                raise

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise BlobStoreError(
                f"Failed to write blob: {e}", storage_path=storage_path
            ) from e
        return storage_path

    async def get(self, storage_path: str) -> bytes:
        resolved = self._resolve(storage_path)
        try:
            return await asyncio.to_thread(resolved.read_bytes)
        except FileNotFoundError:
            raise BlobStoreError(
                f"Blob not found: {storage_path}",
                storage_path=storage_path,
                retryable=False,
            ) from None
        except OSError as e:
            raise BlobStoreError(
                f"Failed to read blob: {e}", storage_path=storage_path
            ) from e

    async def delete(self, storage_path: str) -> None:
        """Remove a blob. Deleting a missing blob succeeds."""
        resolved = self._resolve(storage_path)
        try:
            await asyncio.to_thread(resolved.unlink, True)
        except OSError as e:
            raise BlobStoreError(
                f"Failed to delete blob: {e}", storage_path=storage_path
            ) from e

    async def sign_url(
        self,
        storage_path: str,
        mode: UrlMode = UrlMode.INLINE,
        ttl: int = 3600,
    ) -> str:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        mode = UrlMode(mode)
        self._resolve(storage_path)
        expires = int(time.time()) + ttl
        signature = self._signature(storage_path, mode, expires)
        return (
            f"{self.base_url}/{quote(storage_path)}"
            f"?mode={mode.value}&expires={expires}&signature={signature}"
        )

    # =========================================================================
    # Signature helpers
    # =========================================================================

    def _signature(self, storage_path: str, mode: UrlMode, expires: int) -> str:
        message = f"{storage_path}\n{mode.value}\n{expires}".encode()
        return hmac.new(self._signing_key, message, hashlib.sha256).hexdigest()

    def verify_signature(
        self,
        storage_path: str,
        mode: UrlMode | str,
        expires: int,
        signature: str,
    ) -> bool:
        """True when *signature* matches and *expires* has not passed."""
        if expires <= int(time.time()):
            return False
        expected = self._signature(storage_path, UrlMode(mode), expires)
        return hmac.compare_digest(expected, signature)
