"""Health endpoint covering the metadata store and blob storage."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from casedocs_api.api.deps import SessionmakerDep, SettingsDep, StorageDep
from casedocs_api.common.schema import BaseSchema
from casedocs_api.db import ping, utc_now

router = APIRouter(tags=["health"])

logger = logging.getLogger(__name__)

ComponentState = Literal["ok", "unavailable"]


class HealthResponse(BaseSchema):
    status: Literal["ok", "degraded"]
    database: ComponentState
    storage: ComponentState
    version: str
    timestamp: datetime


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness and dependency readiness",
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": HealthResponse}},
)
async def read_health(
    settings: SettingsDep,
    storage: StorageDep,
    sessionmaker: SessionmakerDep,
) -> JSONResponse:
    timeout = settings.database_timeout.total_seconds()

    database: ComponentState = "ok"
    try:
        async with asyncio.timeout(timeout):
            await ping(sessionmaker)
    except Exception:
        logger.warning("health.database.unavailable", exc_info=True)
        database = "unavailable"

    storage_state: ComponentState = "ok"
    try:
        async with asyncio.timeout(settings.blob_request_timeout.total_seconds()):
            await storage.check_connection()
    except Exception:
        logger.warning("health.storage.unavailable", exc_info=True)
        storage_state = "unavailable"

    healthy = database == "ok" and storage_state == "ok"
    payload = HealthResponse(
        status="ok" if healthy else "degraded",
        database=database,
        storage=storage_state,
        version=settings.app_version,
        timestamp=utc_now(),
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=payload.model_dump(mode="json", by_alias=True),
    )


__all__ = ["HealthResponse", "router"]
