"""Base interfaces for blob storage adapters."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import BinaryIO


class StorageError(Exception):
    """Raised when a storage adapter encounters an unrecoverable error."""


class StorageLimitError(StorageError):
    """Raised when a storage write exceeds the configured size limit."""

    def __init__(self, *, limit: int, received: int) -> None:
        super().__init__(
            f"Object exceeds maximum size of {limit} bytes (received {received} bytes).",
        )
        self.limit = limit
        self.received = received


class WriteCancelledError(StorageError):
    """Raised inside a write once its cancel event has been set."""


class BlobNotFoundError(StorageError):
    """Raised when a key has no blob behind it."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Blob {key!r} was not found")
        self.key = key


@dataclass(frozen=True, slots=True)
class StoredObject:
    """Descriptor returned by a successful ``put``."""

    key: str
    url: str
    checksum: str
    byte_size: int
    content_type: str | None = None


@dataclass(frozen=True, slots=True)
class BlobProperties:
    size: int
    content_type: str | None
    last_modified: datetime | None


@dataclass(frozen=True, slots=True)
class SignedUrl:
    """Time-limited bearer URL for one blob."""

    url: str
    expires_at: datetime


class StorageAdapter(ABC):
    """Contract implemented by the blob storage backends."""

    @abstractmethod
    async def check_connection(self) -> None:
        """Raise StorageError if the storage backend is not accessible."""

    @abstractmethod
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
        """Write ``stream`` to ``key`` (overwriting) while hashing it.

        Raises :class:`StorageLimitError` once ``max_bytes`` is exceeded; no
        blob remains for ``key`` in that case.
        Setting ``cancel`` stops the write at the next chunk with
        :class:`WriteCancelledError`; nothing is left behind for ``key``.
        """

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return whether a blob is stored at ``key``."""

    @abstractmethod
    async def get_properties(self, key: str) -> BlobProperties:
        """Return size/content type/last-modified; BlobNotFoundError if absent."""

    @abstractmethod
    async def generate_signed_url(self, key: str, ttl: timedelta) -> SignedUrl:
        """Return a read-only URL with ``now < expires_at <= now + ttl``."""

    @abstractmethod
    def stream(self, key: str, *, chunk_size: int = 1024 * 1024) -> AsyncIterator[bytes]:
        """Yield the bytes stored at ``key``; BlobNotFoundError if absent."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove ``key``; returns False when nothing was stored there."""


__all__ = [
    "BlobNotFoundError",
    "BlobProperties",
    "SignedUrl",
    "StorageAdapter",
    "StorageError",
    "StorageLimitError",
    "StoredObject",
    "WriteCancelledError",
]
