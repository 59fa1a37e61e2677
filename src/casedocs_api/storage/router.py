"""Serve filesystem-backed signed URLs."""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import Annotated

from fastapi import APIRouter, Path, Request
from fastapi.responses import StreamingResponse

from casedocs_api.common.downloads import build_content_disposition
from casedocs_api.common.problem_details import ApiError

from .base import BlobNotFoundError
from .factory import get_storage_adapter
from .filesystem import FilesystemStorage, SignedUrlError

router = APIRouter(prefix="/storage", tags=["storage"])

logger = logging.getLogger(__name__)


@router.get(
    "/blobs/{token}",
    summary="Download a blob through a signed URL",
    response_class=StreamingResponse,
    responses={
        403: {"description": "The signed URL is invalid or has expired."},
        404: {"description": "No blob is stored under the signed key."},
    },
)
async def download_signed_blob(
    token: Annotated[str, Path(min_length=1)],
    request: Request,
) -> StreamingResponse:
    storage = get_storage_adapter(request)
    if not isinstance(storage, FilesystemStorage):
        # Cloud backends hand out their own signed URLs.
        raise ApiError(error_type="not_found", detail="Signed blob URLs are not served here.")

    try:
        key = storage.resolve_signed_token(token)
    except SignedUrlError as exc:
        logger.info("storage.signed_url.rejected", extra={"reason": str(exc)})
        raise ApiError(error_type="forbidden", detail=str(exc)) from exc

    try:
        properties = await storage.get_properties(key)
    except BlobNotFoundError as exc:
        raise ApiError(error_type="not_found", detail="Blob not found.") from exc

    return StreamingResponse(
        storage.stream(key),
        media_type=properties.content_type or "application/octet-stream",
        headers={
            "Content-Disposition": build_content_disposition(PurePosixPath(key).name),
            "Content-Length": str(properties.size),
        },
    )


__all__ = ["router"]
