"""Shared pytest fixtures for the case documents API tests."""

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from pathlib import Path
from typing import Any

import httpx
import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from casedocs_api.db import db
from casedocs_api.db.migrations import run_migrations
from casedocs_api.main import create_app
from casedocs_api.settings import Settings, reload_settings
from casedocs_api.storage import FilesystemStorage

TEST_SIGNING_SECRET = "test-signing-secret-0123456789-abcdefghij"
PUBLIC_URL = "http://testserver"

_ENV_PREFIX = "CASEDOCS_"


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Drop any CASEDOCS_* variables from the host and work from ``tmp_path``."""

    for name in list(os.environ):
        if name.startswith(_ENV_PREFIX):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    yield


@pytest.fixture()
def base_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> dict[str, str]:
    """Environment for a local app: SQLite + filesystem storage + auth disabled."""

    env = {
        "CASEDOCS_DATABASE_URL": f"sqlite:///{(tmp_path / 'db' / 'casedocs.sqlite').as_posix()}",
        "CASEDOCS_STORAGE_BACKEND": "filesystem",
        "CASEDOCS_STORAGE_ROOT": str(tmp_path / "blobs"),
        "CASEDOCS_STORAGE_SIGNING_SECRET": TEST_SIGNING_SECRET,
        "CASEDOCS_SERVER_PUBLIC_URL": PUBLIC_URL,
        "CASEDOCS_AUTH_DISABLED": "true",
        "CASEDOCS_AUTH_DISABLED_USER_NAME": "Case Worker",
        "CASEDOCS_RATE_LIMIT_ENABLED": "false",
        "CASEDOCS_LOGGING_LEVEL": "DEBUG",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def settings(base_env: dict[str, str]) -> Iterator[Settings]:
    """Settings loaded from ``base_env`` with migrations applied."""

    resolved = reload_settings()
    run_migrations(resolved)
    yield resolved
    reload_settings()


@pytest.fixture()
def app(settings: Settings) -> FastAPI:
    return create_app(settings)


@pytest_asyncio.fixture()
async def async_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Provide an HTTPX async client bound to a started application."""

    async with LifespanManager(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url=PUBLIC_URL) as client:
            yield client
    assert not db.initialized


@pytest.fixture()
def blob_storage(app: FastAPI, async_client: AsyncClient) -> FilesystemStorage:
    storage = app.state.blob_storage
    assert isinstance(storage, FilesystemStorage)
    return storage


UploadFn = Callable[..., Awaitable[httpx.Response]]


@pytest.fixture()
def upload_document(async_client: AsyncClient) -> UploadFn:
    """Return a helper that posts a multipart upload for a client."""

    async def _upload(
        client_id: str = "C-1001",
        *,
        filename: str = "intake-form.pdf",
        content: bytes = b"%PDF-1.7 intake form",
        content_type: str = "application/pdf",
        path: str = "upload",
        **form: Any,
    ) -> httpx.Response:
        data = {key: value for key, value in form.items() if value is not None}
        return await async_client.post(
            f"/api/documents/{client_id}/{path}",
            files={"file": (filename, content, content_type)},
            data=data,
        )

    return _upload
