"""Streaming content checksums."""

from __future__ import annotations

import hashlib
import threading
from typing import BinaryIO

from .base import StorageLimitError, WriteCancelledError

DEFAULT_CHUNK_SIZE = 1024 * 1024
SUPPORTED_ALGORITHMS = frozenset({"sha256", "md5"})


class ContentHasher:
    """Incremental hex digest over a byte stream, with a running size."""

    def __init__(self, algorithm: str = "sha256") -> None:
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported checksum algorithm {algorithm!r}")
        self.algorithm = algorithm
        self._digest = hashlib.new(algorithm, usedforsecurity=False)
        self._size = 0

    def update(self, chunk: bytes) -> None:
        self._digest.update(chunk)
        self._size += len(chunk)

    @property
    def size(self) -> int:
        return self._size

    def hexdigest(self) -> str:
        return self._digest.hexdigest()


class HashingReader:
    """File-like wrapper that hashes bytes as they are read.

    Raises :class:`StorageLimitError` as soon as more than ``max_bytes`` have
    been read, so oversized uploads stop before the rest is consumed. Once
    ``cancel`` is set the next read raises :class:`WriteCancelledError`.
    """

    def __init__(
        self,
        stream: BinaryIO,
        *,
        algorithm: str = "sha256",
        max_bytes: int | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self._stream = stream
        self._max_bytes = max_bytes
        self._cancel = cancel
        self._hasher = ContentHasher(algorithm)

    def read(self, size: int = -1) -> bytes:
        self._check_cancelled()
        chunk = self._stream.read(size)
        self._check_cancelled()
        if not chunk:
            return chunk
        received = self._hasher.size + len(chunk)
        if self._max_bytes is not None and received > self._max_bytes:
            raise StorageLimitError(limit=self._max_bytes, received=received)
        self._hasher.update(chunk)
        return chunk

    def _check_cancelled(self) -> None:
        if self._cancel is not None and self._cancel.is_set():
            raise WriteCancelledError("Blob write was cancelled")

    def __iter__(self):
        while True:
            chunk = self.read(DEFAULT_CHUNK_SIZE)
            if not chunk:
                return
            yield chunk

    @property
    def size(self) -> int:
        return self._hasher.size

    @property
    def checksum(self) -> str:
        return self._hasher.hexdigest()


def hash_stream(
    stream: BinaryIO,
    *,
    algorithm: str = "sha256",
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> str:
    """Return the hex digest of everything remaining in ``stream``."""

    hasher = ContentHasher(algorithm)
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        hasher.update(chunk)
    return hasher.hexdigest()


def rewind(stream: BinaryIO) -> None:
    """Seek ``stream`` back to the start when it supports seeking."""

    seekable = getattr(stream, "seekable", None)
    if callable(seekable) and seekable():
        stream.seek(0)


__all__ = [
    "ContentHasher",
    "DEFAULT_CHUNK_SIZE",
    "HashingReader",
    "SUPPORTED_ALGORITHMS",
    "hash_stream",
    "rewind",
]
