"""Construct the configured storage adapter and attach it to the app."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request

from ..settings import Settings
from .azure_blob import AzureBlobConfig, AzureBlobStorage
from .base import StorageAdapter, StorageError
from .filesystem import FilesystemStorage

logger = logging.getLogger(__name__)


def build_storage_adapter(settings: Settings) -> StorageAdapter:
    if settings.storage_backend == "azure_blob":
        connection_string = (
            settings.blob_connection_string.get_secret_value()
            if settings.blob_connection_string is not None
            else None
        )
        config = AzureBlobConfig(
            account_url=settings.blob_account_url,
            connection_string=connection_string,
            container=settings.blob_container,
            prefix=settings.blob_prefix,
            request_timeout_seconds=settings.blob_request_timeout.total_seconds(),
            max_concurrency=settings.blob_max_concurrency,
            upload_chunk_size_bytes=settings.blob_upload_chunk_size_bytes,
            download_chunk_size_bytes=settings.blob_download_chunk_size_bytes,
        )
        return AzureBlobStorage(config)

    if settings.signing_secret_generated:
        logger.warning(
            "storage.signing_secret.generated",
            extra={"detail": "Signed URLs will not survive a restart."},
        )
    return FilesystemStorage(
        settings.storage_root,
        signing_secret=settings.storage_signing_secret_value,
        public_url=settings.server_public_url,
    )


def init_storage(app: FastAPI, settings: Settings) -> StorageAdapter:
    adapter = build_storage_adapter(settings)
    app.state.blob_storage = adapter
    logger.info(
        "storage.init",
        extra={"backend": settings.storage_backend, "container": settings.blob_container},
    )
    return adapter


def shutdown_storage(app: FastAPI) -> None:
    if hasattr(app.state, "blob_storage"):
        del app.state.blob_storage


def get_storage_adapter(request: Request) -> StorageAdapter:
    adapter = getattr(request.app.state, "blob_storage", None)
    if adapter is None:
        raise StorageError("Blob storage is not initialised.")
    return adapter


__all__ = [
    "build_storage_adapter",
    "get_storage_adapter",
    "init_storage",
    "shutdown_storage",
]
