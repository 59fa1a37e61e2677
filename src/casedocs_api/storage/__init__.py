"""Blob storage adapters and streaming checksums."""

from __future__ import annotations

from .azure_blob import AzureBlobConfig, AzureBlobStorage
from .base import (
    BlobNotFoundError,
    BlobProperties,
    SignedUrl,
    StorageAdapter,
    StorageError,
    StorageLimitError,
    StoredObject,
    WriteCancelledError,
)
from .factory import build_storage_adapter, get_storage_adapter, init_storage, shutdown_storage
from .filesystem import FilesystemStorage, SignedUrlError
from .hashing import ContentHasher, HashingReader, hash_stream

__all__ = [
    "AzureBlobConfig",
    "AzureBlobStorage",
    "BlobNotFoundError",
    "BlobProperties",
    "ContentHasher",
    "FilesystemStorage",
    "HashingReader",
    "SignedUrl",
    "SignedUrlError",
    "StorageAdapter",
    "StorageError",
    "StorageLimitError",
    "StoredObject",
    "WriteCancelledError",
    "build_storage_adapter",
    "get_storage_adapter",
    "hash_stream",
    "init_storage",
    "shutdown_storage",
]
