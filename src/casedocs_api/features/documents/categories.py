"""Document categories, retention policy and upload profiles."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from pathlib import PurePosixPath

from casedocs_api.settings import Settings


class DocumentCategory(StrEnum):
    GENERAL = "general"
    MEDICAL = "medical"
    LEGAL = "legal"
    FINANCIAL = "financial"
    IDENTIFICATION = "identification"
    BENEFITS = "benefits"
    HOUSING = "housing"
    EMPLOYMENT = "employment"
    OTHER = "other"


CATEGORY_LABELS: dict[DocumentCategory, str] = {
    DocumentCategory.GENERAL: "General Documents",
    DocumentCategory.MEDICAL: "Medical Records",
    DocumentCategory.LEGAL: "Legal Documents",
    DocumentCategory.FINANCIAL: "Financial Records",
    DocumentCategory.IDENTIFICATION: "Identification",
    DocumentCategory.BENEFITS: "Benefits Documentation",
    DocumentCategory.HOUSING: "Housing Documents",
    DocumentCategory.EMPLOYMENT: "Employment Records",
    DocumentCategory.OTHER: "Other",
}

RETENTION_YEARS: dict[str, int] = {
    DocumentCategory.LEGAL: 7,
    DocumentCategory.MEDICAL: 5,
    DocumentCategory.FINANCIAL: 7,
    DocumentCategory.BENEFITS: 5,
    DocumentCategory.EMPLOYMENT: 3,
    DocumentCategory.HOUSING: 3,
    DocumentCategory.IDENTIFICATION: 10,
    DocumentCategory.GENERAL: 2,
    DocumentCategory.OTHER: 2,
}
DEFAULT_RETENTION_YEARS = 2


def retention_years(category: str) -> int:
    return RETENTION_YEARS.get(category, DEFAULT_RETENTION_YEARS)


def add_years(moment: datetime, years: int) -> datetime:
    """Shift ``moment`` by whole calendar years; Feb 29 lands on Feb 28."""

    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        return moment.replace(year=moment.year + years, day=28)


def retention_date_for(category: str, uploaded_at: datetime) -> datetime:
    return add_years(uploaded_at, retention_years(category))


class UploadProfile(StrEnum):
    """Upload entry points, each with its own size ceiling."""

    DOCUMENTS = "documents"
    NOTES = "notes"
    CLIENT_FILES = "client_files"


def max_upload_bytes(profile: UploadProfile, settings: Settings) -> int:
    if profile is UploadProfile.NOTES:
        return settings.documents_notes_upload_max_bytes
    if profile is UploadProfile.CLIENT_FILES:
        return settings.documents_client_files_upload_max_bytes
    return settings.documents_upload_max_bytes


ALLOWED_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".jpg",
        ".jpeg",
        ".png",
        ".gif",
        ".bmp",
        ".tif",
        ".tiff",
        ".webp",
        ".heic",
        ".pdf",
        ".doc",
        ".docx",
        ".xls",
        ".xlsx",
        ".ppt",
        ".pptx",
        ".odt",
        ".ods",
        ".odp",
        ".txt",
        ".rtf",
        ".csv",
    }
)

ALLOWED_MIME_TYPES: frozenset[str] = frozenset(
    {
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "application/vnd.oasis.opendocument.text",
        "application/vnd.oasis.opendocument.spreadsheet",
        "application/vnd.oasis.opendocument.presentation",
        "application/rtf",
        "text/rtf",
        "text/plain",
        "text/csv",
    }
)


GENERIC_MIME_TYPES: frozenset[str] = frozenset({"application/octet-stream", "binary/octet-stream"})


def _normalise_mime_type(mime_type: str | None) -> str:
    return (mime_type or "").split(";", 1)[0].strip().lower()


def is_allowed_mime_type(mime_type: str | None) -> bool:
    normalized = _normalise_mime_type(mime_type)
    return normalized.startswith("image/") or normalized in ALLOWED_MIME_TYPES


def is_allowed_upload(filename: str, mime_type: str | None) -> bool:
    """Both gates must pass: an allowed extension, and an allowed or generic MIME type."""

    if PurePosixPath(filename).suffix.lower() not in ALLOWED_EXTENSIONS:
        return False
    normalized = _normalise_mime_type(mime_type)
    return not normalized or normalized in GENERIC_MIME_TYPES or is_allowed_mime_type(normalized)


__all__ = [
    "ALLOWED_EXTENSIONS",
    "ALLOWED_MIME_TYPES",
    "CATEGORY_LABELS",
    "DEFAULT_RETENTION_YEARS",
    "DocumentCategory",
    "GENERIC_MIME_TYPES",
    "RETENTION_YEARS",
    "UploadProfile",
    "add_years",
    "is_allowed_mime_type",
    "is_allowed_upload",
    "max_upload_bytes",
    "retention_date_for",
    "retention_years",
]
