"""Local filesystem-backed storage adapter.

Used for development and tests. Signed URLs are HS256 tokens that the
``/storage/blobs/{token}`` route verifies before streaming the file.
"""

from __future__ import annotations

import mimetypes
import os
import threading
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import BinaryIO

import jwt
from fastapi.concurrency import run_in_threadpool

from .base import (
    BlobNotFoundError,
    BlobProperties,
    SignedUrl,
    StorageAdapter,
    StorageError,
    StoredObject,
)
from .hashing import DEFAULT_CHUNK_SIZE, HashingReader, rewind

SIGNED_URL_ALGORITHM = "HS256"
SIGNED_URL_AUDIENCE = "casedocs:blob-read"


class SignedUrlError(StorageError):
    """Raised when a filesystem signed URL token is invalid or expired."""


def _utc_now() -> datetime:
    return datetime.now(UTC)


class FilesystemStorage(StorageAdapter):
    """Store blobs on the local filesystem within a configured base directory."""

    def __init__(
        self,
        base_dir: Path,
        *,
        signing_secret: str,
        public_url: str,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._base_dir = Path(base_dir).expanduser().resolve()
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._signing_secret = signing_secret
        self._public_url = public_url.rstrip("/")
        self._clock = clock

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def path_for(self, key: str) -> Path:
        """Return the absolute path for ``key``, refusing traversal outside the base."""

        relative = key.lstrip("/")
        if not relative:
            raise StorageError("Storage key must not be empty.")
        candidate = (self._base_dir / relative).resolve()
        try:
            candidate.relative_to(self._base_dir)
        except ValueError as exc:
            raise StorageError("Storage key escapes the configured base directory.") from exc
        return candidate

    def url_for(self, key: str) -> str:
        return self.path_for(key).as_uri()

    async def check_connection(self) -> None:
        def _probe() -> None:
            if not self._base_dir.is_dir() or not os.access(self._base_dir, os.W_OK):
                raise StorageError(f"Storage directory {self._base_dir} is not writable.")

        await run_in_threadpool(_probe)

    async def put(
        self,
        key: str,
        stream: BinaryIO,
        *,
        content_type: str | None = None,
        max_bytes: int | None = None,
        checksum_algorithm: str = "sha256",
        cancel: threading.Event | None = None,
    ) -> StoredObject:
        destination = self.path_for(key)

        def _write() -> StoredObject:
            rewind(stream)
            reader = HashingReader(
                stream,
                algorithm=checksum_algorithm,
                max_bytes=max_bytes,
                cancel=cancel,
            )
            destination.parent.mkdir(parents=True, exist_ok=True)
            partial = destination.with_name(f".{destination.name}.partial")

            success = False
            try:
                with partial.open("wb") as target:
                    for chunk in reader:
                        target.write(chunk)
                partial.replace(destination)
                success = True
            except OSError as exc:
                raise StorageError(f"Failed to write blob {key!r}") from exc
            finally:
                if not success:
                    partial.unlink(missing_ok=True)

            return StoredObject(
                key=key,
                url=destination.as_uri(),
                checksum=reader.checksum,
                byte_size=reader.size,
                content_type=content_type,
            )

        return await run_in_threadpool(_write)

    async def exists(self, key: str) -> bool:
        path = self.path_for(key)
        return await run_in_threadpool(path.is_file)

    async def get_properties(self, key: str) -> BlobProperties:
        path = self.path_for(key)

        def _stat() -> BlobProperties:
            try:
                stat = path.stat()
            except FileNotFoundError as exc:
                raise BlobNotFoundError(key) from exc
            content_type, _ = mimetypes.guess_type(path.name)
            return BlobProperties(
                size=stat.st_size,
                content_type=content_type or "application/octet-stream",
                last_modified=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
            )

        return await run_in_threadpool(_stat)

    async def generate_signed_url(self, key: str, ttl: timedelta) -> SignedUrl:
        if ttl < timedelta(seconds=1):
            raise ValueError("Signed URL lifetime must be at least one second")
        self.path_for(key)

        issued_at = self._clock()
        # JWT expiry has second resolution; flooring keeps it within the ttl.
        expires = int((issued_at + ttl).timestamp())
        token = jwt.encode(
            {
                "sub": key,
                "aud": SIGNED_URL_AUDIENCE,
                "iat": int(issued_at.timestamp()),
                "exp": expires,
            },
            self._signing_secret,
            algorithm=SIGNED_URL_ALGORITHM,
        )
        return SignedUrl(
            url=f"{self._public_url}/api/storage/blobs/{token}",
            expires_at=datetime.fromtimestamp(expires, tz=UTC),
        )

    def resolve_signed_token(self, token: str) -> str:
        """Return the key encoded in ``token``; SignedUrlError when invalid or expired."""

        try:
            claims = jwt.decode(
                token,
                self._signing_secret,
                algorithms=[SIGNED_URL_ALGORITHM],
                audience=SIGNED_URL_AUDIENCE,
                options={"require": ["sub", "exp", "aud"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise SignedUrlError("Signed URL has expired") from exc
        except jwt.InvalidTokenError as exc:
            raise SignedUrlError("Signed URL is invalid") from exc
        return str(claims["sub"])

    async def stream(
        self,
        key: str,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> AsyncIterator[bytes]:
        path = self.path_for(key)
        try:
            source = await run_in_threadpool(path.open, "rb")
        except FileNotFoundError as exc:
            raise BlobNotFoundError(key) from exc

        try:
            while True:
                chunk = await run_in_threadpool(source.read, chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            source.close()

    async def delete(self, key: str) -> bool:
        path = self.path_for(key)

        def _remove() -> bool:
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            except OSError as exc:
                raise StorageError(f"Failed to delete blob {key!r}") from exc
            return True

        return await run_in_threadpool(_remove)


__all__ = ["FilesystemStorage", "SignedUrlError"]
