"""Case documents FastAPI application entry point."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from .api.deps import build_rate_limiters
from .api.router import build_api_router
from .common.exceptions import register_exception_handlers
from .common.logging import setup_logging
from .common.middleware import register_middleware
from .core.security import TokenVerifier
from .lifespan import create_application_lifespan
from .settings import Settings, get_settings

API_PREFIX = "/api"
logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the case documents application."""
    # Settings + logging first so everything else uses the configured root logger.
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        docs_url=settings.docs_url if settings.api_docs_enabled else None,
        redoc_url=None,
        openapi_url=settings.openapi_url if settings.api_docs_enabled else None,
        debug=False,
        lifespan=create_application_lifespan(settings=settings),
    )
    app.state.settings = settings
    app.state.rate_limiters = build_rate_limiters(settings)
    if not settings.auth_disabled:
        app.state.token_verifier = TokenVerifier.from_settings(settings)

    register_exception_handlers(app)
    register_middleware(app, settings=settings)
    app.include_router(build_api_router(), prefix=API_PREFIX)

    if settings.api_docs_enabled:
        logger.info(
            "api.docs.enabled",
            extra={"swagger_url": settings.docs_url, "openapi_url": settings.openapi_url},
        )
    return app


__all__ = ["API_PREFIX", "create_app"]
