"""Aggregate the feature routers mounted under ``/api``."""

from __future__ import annotations

from fastapi import APIRouter

from casedocs_api.features.documents.router import router as documents_router
from casedocs_api.features.health.router import router as health_router
from casedocs_api.storage.router import router as storage_router


def build_api_router() -> APIRouter:
    api_router = APIRouter()
    api_router.include_router(health_router)
    api_router.include_router(documents_router)
    api_router.include_router(storage_router)
    return api_router


__all__ = ["build_api_router"]
