"""Problem Details (RFC 9457) helpers for consistent API error responses."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from fastapi import status
from pydantic import Field

from .schema import BaseSchema


@dataclass(frozen=True)
class ErrorDefinition:
    """Canonical Problem Details error metadata."""

    type: str
    title: str
    status: int


ERROR_DEFINITIONS: dict[str, ErrorDefinition] = {
    "bad_request": ErrorDefinition("bad_request", "Bad request", status.HTTP_400_BAD_REQUEST),
    "validation_failed": ErrorDefinition(
        "validation_failed", "Validation failed", status.HTTP_400_BAD_REQUEST
    ),
    "unsupported_file_type": ErrorDefinition(
        "unsupported_file_type", "Unsupported file type", status.HTTP_400_BAD_REQUEST
    ),
    "unauthorized": ErrorDefinition("unauthorized", "Unauthorized", status.HTTP_401_UNAUTHORIZED),
    "forbidden": ErrorDefinition("forbidden", "Forbidden", status.HTTP_403_FORBIDDEN),
    "not_found": ErrorDefinition("not_found", "Not found", status.HTTP_404_NOT_FOUND),
    "integrity_fault": ErrorDefinition(
        "integrity_fault", "Stored content missing", status.HTTP_404_NOT_FOUND
    ),
    "method_not_allowed": ErrorDefinition(
        "method_not_allowed", "Method not allowed", status.HTTP_405_METHOD_NOT_ALLOWED
    ),
    "conflict": ErrorDefinition("conflict", "Conflict", status.HTTP_409_CONFLICT),
    "payload_too_large": ErrorDefinition(
        "payload_too_large", "Payload too large", status.HTTP_413_CONTENT_TOO_LARGE
    ),
    "validation_error": ErrorDefinition(
        "validation_error", "Validation error", status.HTTP_422_UNPROCESSABLE_CONTENT
    ),
    "rate_limited": ErrorDefinition(
        "rate_limited", "Too many requests", status.HTTP_429_TOO_MANY_REQUESTS
    ),
    "internal_error": ErrorDefinition(
        "internal_error", "Internal server error", status.HTTP_500_INTERNAL_SERVER_ERROR
    ),
    "storage_error": ErrorDefinition(
        "storage_error", "Storage error", status.HTTP_500_INTERNAL_SERVER_ERROR
    ),
    "database_error": ErrorDefinition(
        "database_error", "Database error", status.HTTP_500_INTERNAL_SERVER_ERROR
    ),
    "service_unavailable": ErrorDefinition(
        "service_unavailable", "Service unavailable", status.HTTP_503_SERVICE_UNAVAILABLE
    ),
}

# Several definitions share a status; the first registered one is the default.
STATUS_TO_ERROR_TYPE: dict[int, ErrorDefinition] = {}
for _definition in ERROR_DEFINITIONS.values():
    STATUS_TO_ERROR_TYPE.setdefault(_definition.status, _definition)


class ProblemDetailsErrorItem(BaseSchema):
    """Structured error detail used for validation-style responses."""

    path: str | None = None
    message: str
    code: str | None = None


class ProblemDetails(BaseSchema):
    """Problem Details-style response payload."""

    type: str
    title: str
    status: int
    detail: str | None = None
    instance: str
    request_id: str | None = Field(default=None, alias="requestId")
    errors: list[ProblemDetailsErrorItem] | None = None
    debug: dict[str, str] | None = None


class ApiError(RuntimeError):
    """Exception carrying Problem Details metadata.

    ``error_type`` must be a key of :data:`ERROR_DEFINITIONS`; the status code
    and title default from that definition.
    """

    def __init__(
        self,
        *,
        error_type: str,
        detail: str | None = None,
        status_code: int | None = None,
        title: str | None = None,
        errors: list[ProblemDetailsErrorItem] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        definition = ERROR_DEFINITIONS.get(error_type)
        resolved_status = status_code or (definition.status if definition else 500)
        super().__init__(detail or title or error_type)
        self.error_type = error_type
        self.status_code = resolved_status
        self.detail = detail
        self.title = title or (definition.title if definition else None)
        self.errors = errors
        self.headers = headers


def resolve_error_definition(status_code: int) -> ErrorDefinition:
    """Return the canonical error definition for ``status_code``."""

    return STATUS_TO_ERROR_TYPE.get(
        status_code,
        ErrorDefinition(type="error", title="Error", status=status_code),
    )


def format_error_path(loc: Iterable[Any] | None) -> str | None:
    """Convert a pydantic ``loc`` tuple into a dotted path (``tags[0]``)."""

    if not loc:
        return None
    parts: list[str] = []
    for entry in loc:
        if entry in {"body", "query", "path", "header", "cookie"}:
            continue
        if isinstance(entry, int):
            if parts:
                parts[-1] = f"{parts[-1]}[{entry}]"
            else:
                parts.append(f"[{entry}]")
            continue
        parts.append(str(entry))
    return ".".join(parts) or None


def error_items_from_pydantic(errors: Iterable[dict[str, Any]]) -> list[ProblemDetailsErrorItem]:
    """Convert pydantic error dicts into Problem Details error items."""

    items: list[ProblemDetailsErrorItem] = []
    for entry in errors:
        loc = entry.get("loc")
        code = entry.get("type")
        items.append(
            ProblemDetailsErrorItem(
                path=format_error_path(loc) if isinstance(loc, (list, tuple)) else None,
                message=str(entry.get("msg") or "Invalid value"),
                code=str(code) if code else None,
            )
        )
    return items


def build_problem_details(
    *,
    status_code: int,
    instance: str,
    request_id: str | None,
    detail: str | None = None,
    errors: list[ProblemDetailsErrorItem] | None = None,
    error_type: str | None = None,
    title: str | None = None,
    debug: dict[str, str] | None = None,
) -> ProblemDetails:
    """Construct a Problem Details payload."""

    definition = resolve_error_definition(status_code)
    return ProblemDetails(
        type=error_type or definition.type,
        title=title or definition.title,
        status=status_code,
        detail=detail,
        instance=instance,
        request_id=request_id,
        errors=errors,
        debug=debug,
    )


__all__ = [
    "ERROR_DEFINITIONS",
    "ApiError",
    "ErrorDefinition",
    "ProblemDetails",
    "ProblemDetailsErrorItem",
    "build_problem_details",
    "error_items_from_pydantic",
    "format_error_path",
    "resolve_error_definition",
]
