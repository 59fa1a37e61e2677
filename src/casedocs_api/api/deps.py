"""Per-request dependency providers used by API routers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from casedocs_api.common.rate_limit import InMemoryRateLimiter, RateLimit, enforce_rate_limit
from casedocs_api.db import db
from casedocs_api.settings import Settings
from casedocs_api.storage import StorageAdapter, get_storage_adapter

if TYPE_CHECKING:
    from casedocs_api.features.documents.pipeline import UploadPipeline
    from casedocs_api.features.documents.service import DocumentsService

MUTATION_SCOPE = "mutation"
QUERY_SCOPE = "query"


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    return db.sessionmaker


def get_blob_storage(request: Request) -> StorageAdapter:
    return get_storage_adapter(request)


SettingsDep = Annotated[Settings, Depends(get_app_settings)]
SessionmakerDep = Annotated[async_sessionmaker[AsyncSession], Depends(get_sessionmaker)]
StorageDep = Annotated[StorageAdapter, Depends(get_blob_storage)]


def build_rate_limiters(settings: Settings) -> dict[str, InMemoryRateLimiter]:
    window = settings.rate_limit_window.total_seconds()
    return {
        MUTATION_SCOPE: InMemoryRateLimiter(
            limit=RateLimit(max_requests=settings.rate_limit_mutation_max, window_seconds=window)
        ),
        QUERY_SCOPE: InMemoryRateLimiter(
            limit=RateLimit(max_requests=settings.rate_limit_query_max, window_seconds=window)
        ),
    }


def _limit(request: Request, scope: str) -> None:
    settings: Settings = request.app.state.settings
    if not settings.rate_limit_enabled:
        return
    limiters: dict[str, InMemoryRateLimiter] = request.app.state.rate_limiters
    enforce_rate_limit(limiters[scope], request, scope=scope)


def mutation_rate_limit(request: Request) -> None:
    _limit(request, MUTATION_SCOPE)


def query_rate_limit(request: Request) -> None:
    _limit(request, QUERY_SCOPE)


def get_documents_service(
    settings: SettingsDep,
    storage: StorageDep,
    sessionmaker: SessionmakerDep,
) -> DocumentsService:
    from casedocs_api.features.documents.service import DocumentsService

    return DocumentsService(settings=settings, storage=storage, sessionmaker=sessionmaker)


def get_upload_pipeline(
    settings: SettingsDep,
    storage: StorageDep,
    sessionmaker: SessionmakerDep,
) -> UploadPipeline:
    from casedocs_api.features.documents.pipeline import UploadPipeline

    return UploadPipeline(settings=settings, storage=storage, sessionmaker=sessionmaker)


__all__ = [
    "MUTATION_SCOPE",
    "QUERY_SCOPE",
    "SessionmakerDep",
    "SettingsDep",
    "StorageDep",
    "build_rate_limiters",
    "get_app_settings",
    "get_blob_storage",
    "get_documents_service",
    "get_sessionmaker",
    "get_upload_pipeline",
    "mutation_rate_limit",
    "query_rate_limit",
]
