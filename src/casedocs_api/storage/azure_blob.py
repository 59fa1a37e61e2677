"""Azure Blob storage adapter."""

from __future__ import annotations

import threading
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import BinaryIO

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError
from azure.identity import DefaultAzureCredential
from azure.storage.blob import (
    BlobSasPermissions,
    BlobServiceClient,
    ContentSettings,
    generate_blob_sas,
)
from fastapi.concurrency import iterate_in_threadpool, run_in_threadpool

from .base import (
    BlobNotFoundError,
    BlobProperties,
    SignedUrl,
    StorageAdapter,
    StorageError,
    StoredObject,
)
from .hashing import DEFAULT_CHUNK_SIZE, HashingReader, rewind

# Clock skew allowance for SAS start times.
SAS_START_SKEW = timedelta(minutes=5)


@dataclass(frozen=True, slots=True)
class AzureBlobConfig:
    account_url: str | None
    connection_string: str | None
    container: str
    prefix: str
    request_timeout_seconds: float
    max_concurrency: int
    upload_chunk_size_bytes: int
    download_chunk_size_bytes: int


def _utc_now() -> datetime:
    return datetime.now(UTC)


class AzureBlobStorage(StorageAdapter):
    """Storage adapter backed by Azure Blob Storage.

    The SDK is synchronous; every network call runs in the threadpool so the
    event loop stays free while bytes move.
    """

    def __init__(
        self,
        config: AzureBlobConfig,
        *,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._config = config
        self._clock = clock
        client_options = {
            "max_block_size": config.upload_chunk_size_bytes,
            "max_chunk_get_size": config.download_chunk_size_bytes,
            "max_single_get_size": config.download_chunk_size_bytes,
        }
        if config.connection_string:
            self._service = BlobServiceClient.from_connection_string(
                conn_str=config.connection_string,
                **client_options,
            )
        else:
            if not config.account_url:
                raise StorageError(
                    "Azure Blob account URL is required when no connection string is provided."
                )
            self._service = BlobServiceClient(
                account_url=config.account_url,
                credential=DefaultAzureCredential(),
                **client_options,
            )
        self._container_client = self._service.get_container_client(config.container)

    @property
    def config(self) -> AzureBlobConfig:
        return self._config

    def _blob_name(self, key: str) -> str:
        name = key.lstrip("/")
        if not name:
            raise StorageError("Storage key must not be empty.")
        if self._config.prefix:
            return f"{self._config.prefix}/{name}"
        return name

    def _blob(self, key: str):
        return self._container_client.get_blob_client(self._blob_name(key))

    def url_for(self, key: str) -> str:
        return self._blob(key).url

    async def check_connection(self) -> None:
        def _probe() -> None:
            try:
                self._container_client.get_container_properties(
                    timeout=self._config.request_timeout_seconds,
                )
            except ResourceNotFoundError as exc:
                raise StorageError("Blob container does not exist or is not accessible.") from exc
            except HttpResponseError as exc:
                raise StorageError("Failed to access blob container.") from exc

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
        blob = self._blob(key)

        def _upload() -> StoredObject:
            rewind(stream)
            reader = HashingReader(
                stream,
                algorithm=checksum_algorithm,
                max_bytes=max_bytes,
                cancel=cancel,
            )
            try:
                blob.upload_blob(
                    reader,
                    overwrite=True,
                    content_settings=ContentSettings(content_type=content_type),
                    max_concurrency=self._config.max_concurrency,
                    timeout=self._config.request_timeout_seconds,
                )
            except StorageError:
                # Uncommitted blocks are discarded by the service.
                raise
            except HttpResponseError as exc:
                raise StorageError("Failed to upload blob") from exc

            return StoredObject(
                key=key,
                url=blob.url,
                checksum=reader.checksum,
                byte_size=reader.size,
                content_type=content_type,
            )

        return await run_in_threadpool(_upload)

    async def exists(self, key: str) -> bool:
        blob = self._blob(key)

        def _exists() -> bool:
            try:
                return bool(blob.exists(timeout=self._config.request_timeout_seconds))
            except HttpResponseError as exc:
                raise StorageError("Failed to check blob existence") from exc

        return await run_in_threadpool(_exists)

    async def get_properties(self, key: str) -> BlobProperties:
        blob = self._blob(key)

        def _props() -> BlobProperties:
            try:
                props = blob.get_blob_properties(timeout=self._config.request_timeout_seconds)
            except ResourceNotFoundError as exc:
                raise BlobNotFoundError(key) from exc
            except HttpResponseError as exc:
                raise StorageError("Failed to read blob properties") from exc
            settings = getattr(props, "content_settings", None)
            return BlobProperties(
                size=int(props.size),
                content_type=getattr(settings, "content_type", None),
                last_modified=props.last_modified,
            )

        return await run_in_threadpool(_props)

    def _account_key(self) -> str | None:
        credential = getattr(self._service, "credential", None)
        return getattr(credential, "account_key", None)

    async def generate_signed_url(self, key: str, ttl: timedelta) -> SignedUrl:
        if ttl < timedelta(seconds=1):
            raise ValueError("Signed URL lifetime must be at least one second")
        blob = self._blob(key)
        now = self._clock()
        start = now - SAS_START_SKEW
        # SAS expiry has second resolution; never exceed now + ttl.
        expires_at = (now + ttl).replace(microsecond=0)

        def _sign() -> str:
            common = {
                "account_name": self._service.account_name,
                "container_name": self._config.container,
                "blob_name": blob.blob_name,
                "permission": BlobSasPermissions(read=True),
                "start": start,
                "expiry": expires_at,
            }
            account_key = self._account_key()
            try:
                if account_key:
                    return generate_blob_sas(account_key=account_key, **common)
                delegation_key = self._service.get_user_delegation_key(
                    key_start_time=start,
                    key_expiry_time=expires_at,
                    timeout=self._config.request_timeout_seconds,
                )
                return generate_blob_sas(user_delegation_key=delegation_key, **common)
            except HttpResponseError as exc:
                raise StorageError("Failed to generate blob SAS") from exc

        sas = await run_in_threadpool(_sign)
        return SignedUrl(url=f"{blob.url}?{sas}", expires_at=expires_at)

    async def stream(
        self,
        key: str,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> AsyncIterator[bytes]:
        blob = self._blob(key)

        def _open():
            try:
                return blob.download_blob(
                    max_concurrency=self._config.max_concurrency,
                    timeout=self._config.request_timeout_seconds,
                )
            except ResourceNotFoundError as exc:
                raise BlobNotFoundError(key) from exc
            except HttpResponseError as exc:
                raise StorageError("Failed to download blob") from exc

        downloader = await run_in_threadpool(_open)
        async for chunk in iterate_in_threadpool(downloader.chunks()):
            if chunk:
                yield chunk

    async def delete(self, key: str) -> bool:
        blob = self._blob(key)

        def _delete() -> bool:
            try:
                blob.delete_blob(
                    delete_snapshots="include",
                    timeout=self._config.request_timeout_seconds,
                )
            except ResourceNotFoundError:
                return False
            except HttpResponseError as exc:
                raise StorageError("Failed to delete blob") from exc
            return True

        return await run_in_threadpool(_delete)


__all__ = ["AzureBlobConfig", "AzureBlobStorage"]
