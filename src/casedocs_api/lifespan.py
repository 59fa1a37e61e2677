"""FastAPI lifespan: database, migrations and blob storage."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.routing import Lifespan
from sqlalchemy.engine import make_url

from casedocs_api.common.logging import log_context
from casedocs_api.db import DatabaseConfig, db, utc_now
from casedocs_api.db.migrations import run_migrations_async
from casedocs_api.settings import Settings
from casedocs_api.storage import StorageError, init_storage, shutdown_storage

logger = logging.getLogger(__name__)


def create_application_lifespan(*, settings: Settings) -> Lifespan[FastAPI]:
    """Return the lifespan handler used by the app factory."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.started_at = utc_now()
        logger.info(
            "casedocs_api.startup",
            extra=log_context(
                version=settings.app_version,
                storage_backend=settings.storage_backend,
                auth_disabled=bool(settings.auth_disabled),
            ),
        )
        if settings.auth_disabled:
            logger.warning("auth.disabled", extra=log_context(auth_disabled=True))

        if settings.database_migrate_on_startup:
            logger.info("db.migrate.start")
            await run_migrations_async(settings)
            logger.info("db.migrate.complete")

        cfg = DatabaseConfig.from_settings(settings)
        safe_url = make_url(cfg.url).render_as_string(hide_password=True)
        logger.info("db.init.start", extra={"database_url": safe_url})
        db.init(cfg)
        logger.info("db.init.complete", extra={"database_url": safe_url})

        storage = init_storage(app, settings)
        try:
            await storage.check_connection()
        except StorageError:
            # Health reports the outage; the API still starts.
            logger.warning("storage.check.failed", exc_info=True)

        try:
            yield
        finally:
            shutdown_storage(app)
            await db.dispose()
            logger.info("casedocs_api.shutdown")

    return lifespan


__all__ = ["create_application_lifespan"]
