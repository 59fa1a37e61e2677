"""Pydantic schemas for the documents API."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import UUID

from pydantic import ConfigDict, Field, field_validator

from casedocs_api.common.schema import BaseSchema

from .categories import DocumentCategory


def split_tags(value: Any) -> list[str] | None:
    """Accept a list or a comma separated string; drop blank entries."""

    if value is None:
        return None
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        raise ValueError("Expected a list of strings or a comma separated string")
    return [item.strip() for item in items if item and item.strip()]


class DocumentOut(BaseSchema):
    """Document metadata as returned by the API."""

    document_id: UUID
    client_id: str
    storage_key: str
    original_file_name: str
    stored_file_name: str
    file_size_bytes: int
    mime_type: str | None = None
    checksum: str
    checksum_algorithm: str
    category: str
    description: str | None = None
    tags: list[str] = Field(default_factory=list)
    related_documents: list[str] = Field(default_factory=list)
    confidentiality_level: str | None = None
    uploaded_by: str | None = None
    upload_date: datetime
    last_accessed: datetime | None = None
    access_count: int = 0
    is_archived: bool = False
    retention_date: datetime
    approved_by: str | None = None
    approval_date: datetime | None = None
    version: int = 1
    created_by: str | None = None
    created_at: datetime
    updated_by: str | None = None
    updated_at: datetime


class DocumentUpdate(BaseSchema):
    """Fields a caller may change after upload."""

    model_config = ConfigDict(extra="forbid")

    category: DocumentCategory | None = None
    description: str | None = Field(default=None, max_length=4000)
    tags: list[str] | None = None
    related_documents: list[str] | None = None
    confidentiality_level: str | None = Field(default=None, max_length=32)
    original_file_name: str | None = Field(default=None, min_length=1, max_length=255)
    uploaded_by: str | None = Field(default=None, max_length=255)
    version: int | None = Field(default=None, ge=1)

    @field_validator("tags", mode="before")
    @classmethod
    def _v_tags(cls, value: Any) -> list[str] | None:
        return split_tags(value)

    @field_validator("related_documents", mode="before")
    @classmethod
    def _v_related(cls, value: Any) -> list[str] | None:
        if value is None:
            return None
        if not isinstance(value, (list, tuple)):
            raise ValueError("relatedDocuments must be a list of document identifiers")
        return [str(item) for item in value]


class ApproveRequest(BaseSchema):
    approved_by: str | None = Field(default=None, max_length=255)


class ArchiveRequest(BaseSchema):
    is_archived: bool


class CategoryCount(BaseSchema):
    category: str
    label: str
    count: int


class DocumentSummary(BaseSchema):
    """Aggregate statistics for one client's documents."""

    total_documents: int
    total_file_size: int
    documents_by_category: dict[str, int] = Field(default_factory=dict)
    recent_uploads: int
    pending_approvals: int
    archived_documents: int
    average_file_size: float
    last_upload: date | None = None
    most_accessed_document: str = "None"
    retention_alerts: int


class SignedUrlOut(BaseSchema):
    url: str
    expires_on: datetime


class DeleteResponse(BaseSchema):
    message: str
    document_id: UUID


__all__ = [
    "ApproveRequest",
    "ArchiveRequest",
    "CategoryCount",
    "DeleteResponse",
    "DocumentOut",
    "DocumentSummary",
    "DocumentUpdate",
    "SignedUrlOut",
    "split_tags",
]
