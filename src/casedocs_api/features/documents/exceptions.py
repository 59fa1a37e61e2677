"""Domain errors raised by the documents feature."""

from __future__ import annotations

from typing import Any
from uuid import UUID


class DocumentError(Exception):
    """Base class for document domain errors."""


class DocumentValidationError(DocumentError):
    """Raised when input is missing or malformed; nothing has been written."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message)
        self.field = field
        self.errors = errors or []


class UnsupportedDocumentTypeError(DocumentError):
    """Raised when neither the extension nor the MIME type is allowed."""

    def __init__(self, *, filename: str | None, mime_type: str | None) -> None:
        super().__init__(
            f"File type is not allowed (name={filename!r}, content type={mime_type!r})."
        )
        self.filename = filename
        self.mime_type = mime_type


class DocumentTooLargeError(DocumentError):
    """Raised when an uploaded document exceeds the configured size limit."""

    def __init__(self, *, limit: int, received: int | None = None) -> None:
        if received is None:
            message = f"Uploaded file exceeds the allowed maximum of {limit:,} bytes."
        else:
            message = (
                f"Uploaded file is {received:,} bytes which exceeds the allowed "
                f"maximum of {limit:,} bytes."
            )
        super().__init__(message)
        self.limit = limit
        self.received = received


class DocumentNotFoundError(DocumentError):
    """Raised when a document lookup does not yield a result."""

    def __init__(self, document_id: UUID | str) -> None:
        doc_id = str(document_id)
        super().__init__(f"Document {doc_id!r} not found")
        self.document_id = doc_id


class DocumentIntegrityError(DocumentError):
    """Raised when a document row references a blob that no longer exists."""

    def __init__(self, *, document_id: UUID | str, storage_key: str) -> None:
        doc_id = str(document_id)
        super().__init__(f"Stored file for document {doc_id!r} was not found at {storage_key!r}.")
        self.document_id = doc_id
        self.storage_key = storage_key


class DocumentStorageError(DocumentError):
    """Raised when the blob store call fails or times out."""


class DocumentDatabaseError(DocumentError):
    """Raised when the metadata store call fails or times out."""


__all__ = [
    "DocumentDatabaseError",
    "DocumentError",
    "DocumentIntegrityError",
    "DocumentNotFoundError",
    "DocumentStorageError",
    "DocumentTooLargeError",
    "DocumentValidationError",
    "UnsupportedDocumentTypeError",
]
