"""Centralized FastAPI exception handlers with structured logging."""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from casedocs_api.common.logging import log_context
from casedocs_api.common.problem_details import (
    ApiError,
    ProblemDetailsErrorItem,
    build_problem_details,
    error_items_from_pydantic,
    resolve_error_definition,
)

_UNHANDLED_LOGGER = logging.getLogger("casedocs_api.errors")
_HTTP_LOGGER = logging.getLogger("casedocs_api.http")
_PROBLEM_MEDIA_TYPE = "application/problem+json"


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "correlation_id", None)


def _debug_enabled(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return bool(getattr(settings, "debug", False))


def _problem_response(
    *,
    request: Request,
    status_code: int,
    detail: str | None,
    errors: list[ProblemDetailsErrorItem] | None = None,
    error_type: str | None = None,
    title: str | None = None,
    headers: dict[str, str] | None = None,
    debug: dict[str, str] | None = None,
) -> JSONResponse:
    problem = build_problem_details(
        status_code=status_code,
        instance=str(request.url.path),
        request_id=_request_id(request),
        detail=detail,
        errors=errors,
        error_type=error_type,
        title=title,
        debug=debug,
    )
    return JSONResponse(
        status_code=problem.status,
        content=problem.model_dump(mode="json", by_alias=True, exclude_none=True),
        media_type=_PROBLEM_MEDIA_TYPE,
        headers=headers,
    )


def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected exceptions.

    Logs the error with a stack trace and returns an opaque 500 body. With
    ``debug`` enabled the exception type and message are added under
    ``debug``; the traceback itself never leaves the process.
    """
    _UNHANDLED_LOGGER.exception(
        "unhandled_exception",
        extra=log_context(
            path=str(request.url.path),
            method=request.method,
            exception_type=type(exc).__name__,
            detail=str(exc),
        ),
    )

    debug = None
    if _debug_enabled(request):
        debug = {"exceptionType": type(exc).__name__, "message": str(exc)}

    return _problem_response(
        request=request,
        status_code=500,
        detail="Internal server error",
        error_type=resolve_error_definition(500).type,
        debug=debug,
    )


def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render ``HTTPException`` instances as Problem Details.

    4xx responses are returned without logging; 5xx responses are logged.
    """
    if exc.status_code >= 500:
        _HTTP_LOGGER.error(
            "http_exception",
            extra=log_context(
                path=str(request.url.path),
                method=request.method,
                status_code=exc.status_code,
                detail=exc.detail,
            ),
        )

    detail = exc.detail if isinstance(exc.detail, str) else None
    if exc.status_code == 500:
        detail = "Internal server error"

    return _problem_response(
        request=request,
        status_code=exc.status_code,
        detail=detail,
        headers=getattr(exc, "headers", None),
    )


def request_validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    return _problem_response(
        request=request,
        status_code=422,
        detail="Invalid request",
        errors=error_items_from_pydantic(exc.errors()),
        error_type=resolve_error_definition(422).type,
    )


def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        _HTTP_LOGGER.error(
            "api_error",
            extra=log_context(
                path=str(request.url.path),
                method=request.method,
                status_code=exc.status_code,
                error_type=exc.error_type,
                detail=exc.detail,
            ),
        )

    detail = exc.detail
    debug = None
    if exc.status_code >= 500 and not _debug_enabled(request):
        detail = exc.title
    elif exc.status_code >= 500:
        cause = exc.__cause__
        if cause is not None:
            debug = {"exceptionType": type(cause).__name__, "message": str(cause)}

    return _problem_response(
        request=request,
        status_code=exc.status_code,
        detail=detail,
        errors=exc.errors,
        error_type=exc.error_type,
        title=exc.title,
        headers=exc.headers,
        debug=debug,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the Problem Details handlers on ``app``."""

    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


__all__ = [
    "api_error_handler",
    "http_exception_handler",
    "register_exception_handlers",
    "request_validation_exception_handler",
    "unhandled_exception_handler",
]
