"""Retrieval and lifecycle operations for stored documents."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from casedocs_api.common.logging import log_context
from casedocs_api.db import utc_now
from casedocs_api.settings import Settings
from casedocs_api.storage import BlobNotFoundError, SignedUrl, StorageAdapter, StorageError

from .categories import CATEGORY_LABELS, DocumentCategory
from .exceptions import (
    DocumentDatabaseError,
    DocumentIntegrityError,
    DocumentNotFoundError,
    DocumentStorageError,
    DocumentValidationError,
)
from .repository import DocumentFilters, DocumentsRepository
from .schemas import CategoryCount, DocumentOut, DocumentSummary, DocumentUpdate
from .timeouts import bounded_blob_call, metadata_session

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DocumentDownload:
    """A document ready to stream: metadata plus an async byte iterator."""

    document: DocumentOut
    file_name: str
    mime_type: str
    size: int
    chunks: AsyncIterator[bytes]


class DocumentsService:
    """Manage document metadata and the blobs behind it.

    Each metadata unit of work opens and closes its own session, so no
    database connection is held while bytes move to or from the blob store.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        storage: StorageAdapter,
        sessionmaker: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._settings = settings
        self._storage = storage
        self._sessionmaker = sessionmaker
        self._clock = clock
        self._blob_timeout = settings.blob_request_timeout.total_seconds()
        self._db_timeout = settings.database_timeout.total_seconds()

    def _session(self):
        return metadata_session(self._sessionmaker, timeout=self._db_timeout)

    async def _blob(self, awaitable, *, action: str):
        return await bounded_blob_call(awaitable, timeout=self._blob_timeout, action=action)

    async def list_documents(
        self,
        client_id: str,
        *,
        category: str | None = None,
        is_archived: bool | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[DocumentOut]:
        page_size = limit or self._settings.documents_default_page_size
        filters = DocumentFilters(
            category=category,
            is_archived=is_archived,
            limit=min(page_size, self._settings.documents_max_page_size),
            offset=max(offset, 0),
        )
        async with self._session() as session:
            rows = await DocumentsRepository(session).list_by_client(client_id, filters)
            documents = [DocumentOut.model_validate(row) for row in rows]

        logger.debug(
            "document.list.success",
            extra=log_context(client_id=client_id, count=len(documents)),
        )
        return documents

    async def get_document(self, document_id: UUID) -> DocumentOut:
        async with self._session() as session:
            document = await DocumentsRepository(session).get_by_id(document_id)
            if document is None:
                raise DocumentNotFoundError(document_id)
            return DocumentOut.model_validate(document)

    async def download(self, document_id: UUID) -> DocumentDownload:
        """Resolve a document for streaming and record the access.

        A row whose blob is gone raises :class:`DocumentIntegrityError`.
        """
        document = await self.get_document(document_id)

        try:
            properties = await self._blob(
                self._storage.get_properties(document.storage_key),
                action="properties",
            )
        except BlobNotFoundError as exc:
            logger.error(
                "document.download.integrity_fault",
                extra=log_context(
                    client_id=document.client_id,
                    document_id=document_id,
                    storage_key=document.storage_key,
                ),
            )
            raise DocumentIntegrityError(
                document_id=document_id,
                storage_key=document.storage_key,
            ) from exc
        except StorageError as exc:
            raise DocumentStorageError("Failed to read stored file") from exc

        accessed_at = await self._record_access(document)
        if accessed_at is not None:
            document = document.model_copy(
                update={
                    "access_count": document.access_count + 1,
                    "last_accessed": accessed_at,
                }
            )

        logger.info(
            "document.download.ready",
            extra=log_context(
                client_id=document.client_id,
                document_id=document_id,
                byte_size=properties.size,
            ),
        )
        return DocumentDownload(
            document=document,
            file_name=document.original_file_name,
            mime_type=document.mime_type or properties.content_type or "application/octet-stream",
            size=properties.size,
            chunks=self._guarded_stream(document),
        )

    async def _guarded_stream(self, document: DocumentOut) -> AsyncIterator[bytes]:
        chunk_size = self._settings.blob_download_chunk_size_bytes
        try:
            async for chunk in self._storage.stream(document.storage_key, chunk_size=chunk_size):
                yield chunk
        except StorageError:
            # Headers are already sent.
            logger.error(
                "document.download.stream_failed",
                extra=log_context(
                    document_id=document.document_id,
                    storage_key=document.storage_key,
                ),
                exc_info=True,
            )
            raise

    async def _record_access(self, document: DocumentOut) -> datetime | None:
        accessed_at = self._clock()
        try:
            async with self._session() as session:
                await DocumentsRepository(session).record_access(
                    document.document_id,
                    accessed_at=accessed_at,
                )
        except DocumentDatabaseError:
            logger.warning(
                "document.access.record_failed",
                extra=log_context(client_id=document.client_id, document_id=document.document_id),
                exc_info=True,
            )
            return None
        return accessed_at

    def _resolve_ttl(self, ttl_seconds: int | None) -> timedelta:
        if ttl_seconds is None:
            return self._settings.documents_signed_url_ttl
        ttl = timedelta(seconds=ttl_seconds)
        if ttl < timedelta(seconds=1) or ttl > self._settings.documents_signed_url_max_ttl:
            raise DocumentValidationError(
                "ttl must be between 1 second and "
                f"{int(self._settings.documents_signed_url_max_ttl.total_seconds())} seconds.",
                field="ttl",
            )
        return ttl

    async def generate_signed_url_for_key(
        self,
        storage_key: str | None,
        ttl_seconds: int | None = None,
    ) -> SignedUrl:
        key = (storage_key or "").strip()
        if not key:
            raise DocumentValidationError("A storage key is required.", field="key")
        ttl = self._resolve_ttl(ttl_seconds)
        try:
            signed = await self._blob(
                self._storage.generate_signed_url(key, ttl),
                action="sign",
            )
        except StorageError as exc:
            raise DocumentStorageError("Failed to generate download link") from exc

        logger.info(
            "document.signed_url.issued",
            extra=log_context(storage_key=key, expires_at=signed.expires_at.isoformat()),
        )
        return signed

    async def generate_download_link(
        self,
        document_id: UUID,
        ttl_seconds: int | None = None,
    ) -> SignedUrl:
        document = await self.get_document(document_id)
        return await self.generate_signed_url_for_key(document.storage_key, ttl_seconds)

    async def _mutate(
        self,
        document_id: UUID,
        values: dict[str, Any],
        *,
        actor: str | None,
        event: str,
    ) -> DocumentOut:
        values["updated_at"] = self._clock()
        values["updated_by"] = actor
        async with self._session() as session:
            document = await DocumentsRepository(session).update(document_id, values)
            if document is None:
                raise DocumentNotFoundError(document_id)
            payload = DocumentOut.model_validate(document)

        logger.info(
            event,
            extra=log_context(
                client_id=payload.client_id,
                document_id=document_id,
                user_id=actor,
                fields=",".join(sorted(values)),
            ),
        )
        return payload

    async def approve(
        self,
        document_id: UUID,
        approved_by: str | None,
        *,
        actor: str | None = None,
    ) -> DocumentOut:
        """Record an approval; re-approving overwrites approver and date."""

        approver = (approved_by or actor or "").strip()
        if not approver:
            raise DocumentValidationError("approvedBy is required.", field="approvedBy")
        return await self._mutate(
            document_id,
            {"approved_by": approver, "approval_date": self._clock()},
            actor=actor or approver,
            event="document.approve.success",
        )

    async def set_archived(
        self,
        document_id: UUID,
        is_archived: bool,
        *,
        actor: str | None = None,
    ) -> DocumentOut:
        return await self._mutate(
            document_id,
            {"is_archived": bool(is_archived)},
            actor=actor,
            event="document.archive.success",
        )

    async def update_metadata(
        self,
        document_id: UUID,
        fields: Mapping[str, Any],
        *,
        actor: str | None = None,
    ) -> DocumentOut:
        """Apply a partial update limited to the editable metadata fields.

        Any other key (structural or unknown) rejects the whole request.
        ``retention_date`` stays as computed at upload.
        """
        if not fields:
            raise DocumentValidationError("No valid fields to update.")
        try:
            update = DocumentUpdate.model_validate(dict(fields))
        except ValidationError as exc:
            raise DocumentValidationError(
                "Invalid document update.",
                errors=exc.errors(),
            ) from exc

        values = update.model_dump(exclude_unset=True)
        if not values:
            raise DocumentValidationError("No valid fields to update.")
        if "category" in values and values["category"] is None:
            raise DocumentValidationError("category cannot be empty.", field="category")
        if "original_file_name" in values and values["original_file_name"] is None:
            raise DocumentValidationError(
                "originalFileName cannot be empty.",
                field="originalFileName",
            )
        if "version" in values and values["version"] is None:
            raise DocumentValidationError("version cannot be empty.", field="version")
        for list_field in ("tags", "related_documents"):
            if list_field in values and values[list_field] is None:
                values[list_field] = []

        return await self._mutate(
            document_id,
            values,
            actor=actor,
            event="document.update.success",
        )

    async def delete(self, document_id: UUID, *, actor: str | None = None) -> None:
        """Delete the row, then the blob; a failed blob delete is only logged."""

        async with self._session() as session:
            repository = DocumentsRepository(session)
            document = await repository.get_by_id(document_id)
            if document is None:
                raise DocumentNotFoundError(document_id)
            storage_key = document.storage_key
            client_id = document.client_id
            await repository.delete(document_id)

        try:
            removed = await self._blob(self._storage.delete(storage_key), action="delete")
        except StorageError:
            logger.error(
                "document.delete.blob_failed",
                extra=log_context(
                    client_id=client_id,
                    document_id=document_id,
                    storage_key=storage_key,
                ),
                exc_info=True,
            )
        else:
            if not removed:
                logger.warning(
                    "document.delete.blob_missing",
                    extra=log_context(document_id=document_id, storage_key=storage_key),
                )

        logger.info(
            "document.delete.success",
            extra=log_context(
                client_id=client_id,
                document_id=document_id,
                storage_key=storage_key,
                user_id=actor,
            ),
        )

    async def category_summary(self, client_id: str) -> list[CategoryCount]:
        """Non-archived counts for every category, zero-filled."""

        async with self._session() as session:
            counts = await DocumentsRepository(session).count_by_category(client_id)
        return [
            CategoryCount(
                category=category.value,
                label=CATEGORY_LABELS[category],
                count=counts.get(category.value, 0),
            )
            for category in DocumentCategory
        ]

    async def summary(self, client_id: str) -> DocumentSummary:
        now = self._clock()
        async with self._session() as session:
            repository = DocumentsRepository(session)
            row = await repository.summary(client_id, now=now)
            by_category = await repository.count_by_category(client_id)

        return DocumentSummary(
            total_documents=row.total_documents,
            total_file_size=row.total_file_size,
            documents_by_category=by_category,
            recent_uploads=row.recent_uploads,
            pending_approvals=row.pending_approvals,
            archived_documents=row.archived_documents,
            average_file_size=round(row.average_file_size, 2),
            last_upload=row.last_upload.date() if row.last_upload else None,
            most_accessed_document=row.most_accessed_file_name or "None",
            retention_alerts=row.retention_alerts,
        )


__all__ = ["DocumentDownload", "DocumentsService"]
