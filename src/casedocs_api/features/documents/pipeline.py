"""Upload pipeline: validate, store the blob, then persist metadata."""

from __future__ import annotations

import logging
import re
import secrets
import unicodedata
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePosixPath
from typing import BinaryIO, cast

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from casedocs_api.common.logging import log_context
from casedocs_api.db import new_uuid, utc_now
from casedocs_api.settings import Settings
from casedocs_api.storage import StorageAdapter, StorageError, StorageLimitError, StoredObject

from .categories import (
    DocumentCategory,
    UploadProfile,
    is_allowed_upload,
    max_upload_bytes,
    retention_date_for,
)
from .exceptions import (
    DocumentDatabaseError,
    DocumentStorageError,
    DocumentTooLargeError,
    DocumentValidationError,
    UnsupportedDocumentTypeError,
)
from .models import Document
from .repository import DocumentsRepository
from .schemas import DocumentOut
from .timeouts import bounded_blob_call, bounded_blob_write, metadata_session

logger = logging.getLogger(__name__)

_FALLBACK_FILENAME = "upload"
DEFAULT_CONFIDENTIALITY_LEVEL = "Medium"
_MAX_FILENAME_LENGTH = 255
_MAX_KEY_NAME_LENGTH = 120
_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(slots=True)
class UploadRequest:
    """Everything the pipeline needs for one upload."""

    client_id: str | None
    stream: BinaryIO | None
    filename: str | None
    content_type: str | None
    declared_size: int | None = None
    category: str | None = None
    description: str | None = None
    confidentiality_level: str | None = None
    tags: list[str] | None = None
    related_documents: list[str] = field(default_factory=list)
    uploaded_by: str | None = None
    actor: str | None = None


def normalise_filename(name: str | None) -> str:
    """Return a display-safe file name (no path, no control characters)."""

    if not name:
        return _FALLBACK_FILENAME
    candidate = PurePosixPath(name.replace("\\", "/")).name.strip()
    filtered = "".join(ch for ch in candidate if unicodedata.category(ch)[0] != "C").strip()
    if len(filtered) > _MAX_FILENAME_LENGTH:
        filtered = filtered[:_MAX_FILENAME_LENGTH].rstrip()
    return filtered or _FALLBACK_FILENAME


def sanitize_key_segment(value: str, *, fallback: str = _FALLBACK_FILENAME) -> str:
    """Replace runs of characters outside ``[A-Za-z0-9._-]`` with ``_``."""

    cleaned = _UNSAFE_KEY_CHARS.sub("_", value).strip("._")
    return cleaned[:_MAX_KEY_NAME_LENGTH] or fallback


def build_storage_key(
    *,
    client_id: str,
    category: str,
    filename: str,
    now: datetime,
) -> tuple[str, str]:
    """Return ``(storage_key, stored_file_name)`` for a new upload."""

    token = f"{int(now.timestamp() * 1000)}-{secrets.token_hex(4)}"
    stored_name = f"{token}-{sanitize_key_segment(filename)}"
    client_segment = sanitize_key_segment(client_id, fallback="client")
    return f"{client_segment}/{category}/{stored_name}", stored_name


def _has_content(stream: BinaryIO) -> bool:
    try:
        start = stream.tell()
        head = stream.read(1)
        stream.seek(start)
    except (OSError, ValueError, AttributeError):
        # Unseekable streams are checked after the write.
        return True
    return bool(head)


class UploadPipeline:
    """Orchestrate one upload across the blob store and metadata store.

    The metadata row is only written after the blob write succeeded; when the
    row cannot be written the blob is deleted again before the error surfaces.
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
        self._upload_timeout = settings.blob_upload_timeout.total_seconds()
        self._db_timeout = settings.database_timeout.total_seconds()

    def validate(self, request: UploadRequest, *, profile: UploadProfile) -> DocumentCategory:
        """Run every pre-write check, in order; returns the resolved category."""

        client_id = (request.client_id or "").strip()
        if not client_id:
            raise DocumentValidationError("Client ID is required.", field="clientId")
        if request.stream is None or request.declared_size == 0:
            raise DocumentValidationError("No file uploaded.", field="file")
        if not _has_content(request.stream):
            raise DocumentValidationError("Uploaded file is empty.", field="file")

        filename = normalise_filename(request.filename)
        if not is_allowed_upload(filename, request.content_type):
            raise UnsupportedDocumentTypeError(filename=filename, mime_type=request.content_type)

        limit = max_upload_bytes(profile, self._settings)
        if request.declared_size is not None and request.declared_size > limit:
            raise DocumentTooLargeError(limit=limit, received=request.declared_size)

        raw_category = (request.category or DocumentCategory.GENERAL.value).strip().lower()
        try:
            return DocumentCategory(raw_category)
        except ValueError as exc:
            raise DocumentValidationError(
                f"Unknown document category {request.category!r}.",
                field="category",
            ) from exc

    async def upload(
        self,
        request: UploadRequest,
        *,
        profile: UploadProfile = UploadProfile.DOCUMENTS,
    ) -> DocumentOut:
        category = self.validate(request, profile=profile)
        stream = cast(BinaryIO, request.stream)
        client_id = (request.client_id or "").strip()
        original_name = normalise_filename(request.filename)
        limit = max_upload_bytes(profile, self._settings)
        now = self._clock()
        storage_key, stored_name = build_storage_key(
            client_id=client_id,
            category=category.value,
            filename=original_name,
            now=now,
        )

        logger.info(
            "document.upload.start",
            extra=log_context(
                client_id=client_id,
                storage_key=storage_key,
                user_id=request.actor,
                profile=profile.value,
                content_type=request.content_type,
            ),
        )

        stored = await self._write_blob(
            storage_key,
            stream,
            content_type=request.content_type,
            limit=limit,
        )
        if stored.byte_size == 0:
            await self._discard_blob(storage_key, client_id=client_id)
            raise DocumentValidationError("Uploaded file is empty.", field="file")

        tags = list(request.tags or []) or [category.value]
        document = Document(
            id=new_uuid(),
            client_id=client_id,
            storage_key=storage_key,
            original_file_name=original_name,
            stored_file_name=stored_name,
            file_size_bytes=stored.byte_size,
            mime_type=request.content_type or "application/octet-stream",
            checksum=stored.checksum,
            checksum_algorithm=self._settings.documents_checksum_algorithm,
            category=category.value,
            description=request.description,
            tags=tags,
            related_documents=list(request.related_documents),
            confidentiality_level=request.confidentiality_level or DEFAULT_CONFIDENTIALITY_LEVEL,
            uploaded_by=request.uploaded_by or request.actor,
            upload_date=now,
            access_count=0,
            is_archived=False,
            retention_date=retention_date_for(category.value, now),
            version=1,
            created_by=request.actor,
            created_at=now,
            updated_by=request.actor,
            updated_at=now,
        )

        try:
            async with metadata_session(self._sessionmaker, timeout=self._db_timeout) as session:
                await DocumentsRepository(session).insert(document)
                payload = DocumentOut.model_validate(document)
        except Exception as exc:
            await self._discard_blob(storage_key, client_id=client_id)
            logger.error(
                "document.upload.metadata_failed",
                extra=log_context(
                    client_id=client_id,
                    storage_key=storage_key,
                    error=type(exc).__name__,
                ),
            )
            if isinstance(exc, DocumentDatabaseError):
                raise
            raise DocumentDatabaseError("Failed to record document metadata") from exc

        logger.info(
            "document.upload.success",
            extra=log_context(
                client_id=client_id,
                document_id=document.id,
                storage_key=storage_key,
                user_id=request.actor,
                byte_size=stored.byte_size,
                checksum=stored.checksum,
            ),
        )
        return payload

    async def _write_blob(
        self,
        storage_key: str,
        stream: BinaryIO,
        *,
        content_type: str | None,
        limit: int,
    ) -> StoredObject:
        try:
            return await bounded_blob_write(
                lambda cancel: self._storage.put(
                    storage_key,
                    stream,
                    content_type=content_type,
                    max_bytes=limit,
                    checksum_algorithm=self._settings.documents_checksum_algorithm,
                    cancel=cancel,
                ),
                timeout=self._upload_timeout,
            )
        except StorageLimitError as exc:
            logger.info(
                "document.upload.too_large",
                extra=log_context(storage_key=storage_key, limit=exc.limit, received=exc.received),
            )
            raise DocumentTooLargeError(limit=exc.limit, received=exc.received) from exc
        except StorageError as exc:
            logger.error(
                "document.upload.blob_failed",
                extra=log_context(storage_key=storage_key, error=str(exc)),
            )
            # The write has stopped; drop anything it committed.
            await self._discard_blob(storage_key)
            raise DocumentStorageError("Failed to store uploaded file") from exc

    async def _discard_blob(self, storage_key: str, *, client_id: str | None = None) -> None:
        try:
            await bounded_blob_call(
                self._storage.delete(storage_key),
                timeout=self._blob_timeout,
                action="delete",
            )
        except StorageError:
            logger.warning(
                "document.upload.cleanup_failed",
                extra=log_context(client_id=client_id, storage_key=storage_key),
                exc_info=True,
            )


__all__ = [
    "UploadPipeline",
    "UploadRequest",
    "build_storage_key",
    "normalise_filename",
    "sanitize_key_segment",
]
