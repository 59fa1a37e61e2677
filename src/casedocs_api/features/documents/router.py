"""HTTP routes for client documents."""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any
from uuid import UUID

from fastapi import (
    APIRouter,
    Body,
    Depends,
    File,
    Form,
    Path,
    Query,
    Security,
    UploadFile,
    status,
)
from fastapi.responses import StreamingResponse

from casedocs_api.api.deps import (
    get_documents_service,
    get_upload_pipeline,
    mutation_rate_limit,
    query_rate_limit,
)
from casedocs_api.common.downloads import build_content_disposition
from casedocs_api.common.problem_details import (
    ApiError,
    ProblemDetailsErrorItem,
    error_items_from_pydantic,
)
from casedocs_api.core.security import CurrentPrincipal, ManagerPrincipal, get_current_principal

from .categories import DocumentCategory, UploadProfile
from .exceptions import (
    DocumentDatabaseError,
    DocumentError,
    DocumentIntegrityError,
    DocumentNotFoundError,
    DocumentStorageError,
    DocumentTooLargeError,
    DocumentValidationError,
    UnsupportedDocumentTypeError,
)
from .pipeline import UploadPipeline, UploadRequest
from .schemas import (
    ApproveRequest,
    ArchiveRequest,
    CategoryCount,
    DeleteResponse,
    DocumentOut,
    DocumentSummary,
    SignedUrlOut,
    split_tags,
)
from .service import DocumentsService

router = APIRouter(
    prefix="/documents",
    tags=["documents"],
    dependencies=[Security(get_current_principal)],
)

logger = logging.getLogger(__name__)

ClientPath = Annotated[
    str,
    Path(description="Client identifier", alias="clientId", min_length=1, max_length=64),
]
DocumentPath = Annotated[str, Path(description="Document identifier", alias="documentId")]
DocumentsServiceDep = Annotated[DocumentsService, Depends(get_documents_service)]
UploadPipelineDep = Annotated[UploadPipeline, Depends(get_upload_pipeline)]

_MUTATION = [Depends(mutation_rate_limit)]
_QUERY = [Depends(query_rate_limit)]

_UPLOAD_RESPONSES: dict[int | str, dict[str, Any]] = {
    status.HTTP_400_BAD_REQUEST: {"description": "No file, bad metadata or disallowed type."},
    status.HTTP_401_UNAUTHORIZED: {"description": "Authentication required."},
    status.HTTP_413_CONTENT_TOO_LARGE: {"description": "File exceeds the upload ceiling."},
}


def _api_error(exc: DocumentError) -> ApiError:
    """Translate a documents domain error into a Problem Details error."""

    if isinstance(exc, DocumentValidationError):
        errors: list[ProblemDetailsErrorItem] | None = None
        if exc.errors:
            errors = error_items_from_pydantic(exc.errors)
        elif exc.field:
            errors = [ProblemDetailsErrorItem(path=exc.field, message=str(exc))]
        return ApiError(error_type="validation_failed", detail=str(exc), errors=errors)
    if isinstance(exc, UnsupportedDocumentTypeError):
        return ApiError(error_type="unsupported_file_type", detail=str(exc))
    if isinstance(exc, DocumentTooLargeError):
        return ApiError(error_type="payload_too_large", detail=str(exc))
    if isinstance(exc, DocumentIntegrityError):
        return ApiError(
            error_type="integrity_fault",
            detail=f"Stored file for document {exc.document_id} is missing.",
        )
    if isinstance(exc, DocumentNotFoundError):
        return ApiError(error_type="not_found", detail=str(exc))
    if isinstance(exc, DocumentStorageError):
        return ApiError(error_type="storage_error", detail=str(exc))
    if isinstance(exc, DocumentDatabaseError):
        return ApiError(error_type="database_error", detail=str(exc))
    return ApiError(error_type="internal_error", detail=str(exc))


def _document_id(raw: str) -> UUID:
    try:
        return UUID(raw)
    except ValueError as exc:
        raise ApiError(error_type="not_found", detail=f"Document {raw!r} not found") from exc


def _parse_list_field(raw: str | None, *, field: str) -> list[str] | None:
    """Accept a JSON array or a comma separated string from a form field."""

    if raw is None or not raw.strip():
        return None
    value: Any = raw
    if raw.lstrip().startswith("["):
        try:
            value = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ApiError(
                error_type="validation_failed",
                detail=f"{field} must be a JSON array or a comma separated list.",
                errors=[ProblemDetailsErrorItem(path=field, message="Malformed JSON array")],
            ) from exc
    try:
        return split_tags(value)
    except ValueError as exc:
        raise ApiError(
            error_type="validation_failed",
            detail=str(exc),
            errors=[ProblemDetailsErrorItem(path=field, message=str(exc))],
        ) from exc


async def _upload(
    *,
    pipeline: UploadPipeline,
    profile: UploadProfile,
    client_id: str,
    principal: CurrentPrincipal,
    file: UploadFile | None,
    category: str | None,
    description: str | None,
    confidentiality_level: str | None,
    tags: str | None,
    related_documents: str | None,
    uploaded_by: str | None,
) -> DocumentOut:
    request = UploadRequest(
        client_id=client_id,
        stream=file.file if file is not None else None,
        filename=file.filename if file is not None else None,
        content_type=file.content_type if file is not None else None,
        declared_size=file.size if file is not None else None,
        category=category,
        description=description,
        confidentiality_level=confidentiality_level,
        tags=_parse_list_field(tags, field="tags"),
        related_documents=_parse_list_field(related_documents, field="relatedDocuments") or [],
        uploaded_by=uploaded_by,
        actor=principal.name,
    )
    try:
        return await pipeline.upload(request, profile=profile)
    except DocumentError as exc:
        raise _api_error(exc) from exc
    finally:
        if file is not None:
            await file.close()


def _upload_route(path: str, profile: UploadProfile, summary: str) -> None:
    @router.post(
        path,
        dependencies=_MUTATION,
        response_model=DocumentOut,
        status_code=status.HTTP_200_OK,
        summary=summary,
        responses=_UPLOAD_RESPONSES,
        name=f"upload_{profile.value}",
    )
    async def upload_document(
        client_id: ClientPath,
        pipeline: UploadPipelineDep,
        principal: CurrentPrincipal,
        *,
        file: Annotated[UploadFile | None, File()] = None,
        category: Annotated[str | None, Form()] = None,
        description: Annotated[str | None, Form()] = None,
        confidentiality_level: Annotated[str | None, Form(alias="confidentialityLevel")] = None,
        tags: Annotated[str | None, Form()] = None,
        related_documents: Annotated[str | None, Form(alias="relatedDocuments")] = None,
        uploaded_by: Annotated[str | None, Form(alias="uploadedBy")] = None,
    ) -> DocumentOut:
        return await _upload(
            pipeline=pipeline,
            profile=profile,
            client_id=client_id,
            principal=principal,
            file=file,
            category=category,
            description=description,
            confidentiality_level=confidentiality_level,
            tags=tags,
            related_documents=related_documents,
            uploaded_by=uploaded_by,
        )


# Static paths first so they are not captured by ``/{clientId}``.
@router.get(
    "/download-url",
    dependencies=_QUERY,
    response_model=SignedUrlOut,
    summary="Create a time-limited download URL for a storage key",
)
async def create_download_url(
    service: DocumentsServiceDep,
    key: Annotated[str | None, Query()] = None,
    ttl: Annotated[int | None, Query(description="Lifetime in seconds")] = None,
) -> SignedUrlOut:
    try:
        signed = await service.generate_signed_url_for_key(key, ttl)
    except DocumentError as exc:
        raise _api_error(exc) from exc
    return SignedUrlOut(url=signed.url, expires_on=signed.expires_at)


@router.get(
    "/{clientId}",
    dependencies=_QUERY,
    response_model=list[DocumentOut],
    summary="List a client's documents",
)
async def list_documents(
    client_id: ClientPath,
    service: DocumentsServiceDep,
    category: Annotated[DocumentCategory | None, Query()] = None,
    is_archived: Annotated[bool | None, Query(alias="isArchived")] = None,
    limit: Annotated[int | None, Query(ge=1)] = None,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[DocumentOut]:
    try:
        return await service.list_documents(
            client_id,
            category=category.value if category is not None else None,
            is_archived=is_archived,
            limit=limit,
            offset=offset,
        )
    except DocumentError as exc:
        raise _api_error(exc) from exc


_upload_route("/{clientId}/upload", UploadProfile.DOCUMENTS, "Upload a client document")
_upload_route("/{clientId}/notes/upload", UploadProfile.NOTES, "Upload a note attachment")
_upload_route(
    "/{clientId}/client-files/upload",
    UploadProfile.CLIENT_FILES,
    "Upload a client file",
)


@router.get(
    "/{clientId}/categories",
    dependencies=_QUERY,
    response_model=list[CategoryCount],
    summary="Count non-archived documents per category",
)
async def category_counts(client_id: ClientPath, service: DocumentsServiceDep) -> list[CategoryCount]:
    try:
        return await service.category_summary(client_id)
    except DocumentError as exc:
        raise _api_error(exc) from exc


@router.get(
    "/{clientId}/summary",
    dependencies=_QUERY,
    response_model=DocumentSummary,
    summary="Aggregate document statistics for a client",
)
async def document_summary(client_id: ClientPath, service: DocumentsServiceDep) -> DocumentSummary:
    try:
        return await service.summary(client_id)
    except DocumentError as exc:
        raise _api_error(exc) from exc


@router.put(
    "/{documentId}",
    dependencies=_MUTATION,
    response_model=DocumentOut,
    summary="Update document metadata",
)
async def update_document(
    document_id: DocumentPath,
    service: DocumentsServiceDep,
    principal: CurrentPrincipal,
    payload: Annotated[dict[str, Any], Body()],
) -> DocumentOut:
    try:
        return await service.update_metadata(
            _document_id(document_id),
            payload,
            actor=principal.name,
        )
    except DocumentError as exc:
        raise _api_error(exc) from exc


@router.delete(
    "/{documentId}",
    dependencies=_MUTATION,
    response_model=DeleteResponse,
    summary="Delete a document and its stored file",
)
async def delete_document(
    document_id: DocumentPath,
    service: DocumentsServiceDep,
    principal: ManagerPrincipal,
) -> DeleteResponse:
    resolved = _document_id(document_id)
    try:
        await service.delete(resolved, actor=principal.name)
    except DocumentError as exc:
        raise _api_error(exc) from exc
    return DeleteResponse(message="Document deleted successfully", document_id=resolved)


@router.get(
    "/{documentId}/download",
    dependencies=_QUERY,
    summary="Stream the stored file",
    response_class=StreamingResponse,
    responses={status.HTTP_404_NOT_FOUND: {"description": "Document or stored file missing."}},
)
async def download_document(
    document_id: DocumentPath,
    service: DocumentsServiceDep,
) -> StreamingResponse:
    try:
        download = await service.download(_document_id(document_id))
    except DocumentError as exc:
        raise _api_error(exc) from exc

    return StreamingResponse(
        download.chunks,
        media_type=download.mime_type,
        headers={
            "Content-Disposition": build_content_disposition(download.file_name),
            "Content-Length": str(download.size),
        },
    )


@router.get(
    "/{documentId}/download-link",
    dependencies=_QUERY,
    response_model=SignedUrlOut,
    summary="Create a time-limited download URL for a document",
)
async def create_download_link(
    document_id: DocumentPath,
    service: DocumentsServiceDep,
    ttl: Annotated[int | None, Query(description="Lifetime in seconds")] = None,
) -> SignedUrlOut:
    try:
        signed = await service.generate_download_link(_document_id(document_id), ttl)
    except DocumentError as exc:
        raise _api_error(exc) from exc
    return SignedUrlOut(url=signed.url, expires_on=signed.expires_at)


@router.post(
    "/{documentId}/approve",
    dependencies=_MUTATION,
    response_model=DocumentOut,
    summary="Approve a document",
)
async def approve_document(
    document_id: DocumentPath,
    service: DocumentsServiceDep,
    principal: ManagerPrincipal,
    payload: Annotated[ApproveRequest | None, Body()] = None,
) -> DocumentOut:
    approved_by = payload.approved_by if payload is not None else None
    try:
        return await service.approve(
            _document_id(document_id),
            approved_by,
            actor=principal.name,
        )
    except DocumentError as exc:
        raise _api_error(exc) from exc


@router.post(
    "/{documentId}/archive",
    dependencies=_MUTATION,
    response_model=DocumentOut,
    summary="Archive or unarchive a document",
)
async def archive_document(
    document_id: DocumentPath,
    service: DocumentsServiceDep,
    principal: ManagerPrincipal,
    payload: ArchiveRequest,
) -> DocumentOut:
    try:
        return await service.set_archived(
            _document_id(document_id),
            payload.is_archived,
            actor=principal.name,
        )
    except DocumentError as exc:
        raise _api_error(exc) from exc


__all__ = ["router"]
