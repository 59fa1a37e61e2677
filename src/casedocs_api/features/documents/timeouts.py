"""Time-bounded wrappers around metadata and blob store calls."""

from __future__ import annotations

import asyncio
import contextlib
import threading
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from casedocs_api.db import session_scope
from casedocs_api.storage import StorageError

from .exceptions import DocumentDatabaseError

T = TypeVar("T")


@asynccontextmanager
async def metadata_session(
    sessionmaker: async_sessionmaker[AsyncSession],
    *,
    timeout: float,
) -> AsyncIterator[AsyncSession]:
    """Open one unit of work bounded by ``timeout`` seconds.

    Timeouts and SQLAlchemy failures surface as :class:`DocumentDatabaseError`.
    """
    try:
        async with asyncio.timeout(timeout):
            async with session_scope(sessionmaker) as session:
                yield session
    except TimeoutError as exc:
        raise DocumentDatabaseError("Metadata store call timed out") from exc
    except SQLAlchemyError as exc:
        raise DocumentDatabaseError("Metadata store call failed") from exc


async def bounded_blob_call(awaitable: Awaitable[T], *, timeout: float, action: str) -> T:
    """Await a blob store call; a timeout surfaces as :class:`StorageError`."""

    try:
        async with asyncio.timeout(timeout):
            return await awaitable
    except TimeoutError as exc:
        raise StorageError(f"Blob {action} timed out after {timeout:g}s") from exc


async def bounded_blob_write(
    write: Callable[[threading.Event], Awaitable[T]],
    *,
    timeout: float,
) -> T:
    """Run ``write(cancel)`` for at most ``timeout`` seconds.

    On timeout or cancellation the event is set and the write is awaited to
    completion, so no worker thread is still writing once this returns.
    """

    cancel = threading.Event()
    task = asyncio.ensure_future(write(cancel))
    try:
        async with asyncio.timeout(timeout):
            return await asyncio.shield(task)
    except TimeoutError as exc:
        cancel.set()
        with contextlib.suppress(StorageError):
            await task
        raise StorageError(f"Blob upload timed out after {timeout:g}s") from exc
    except asyncio.CancelledError:
        cancel.set()
        with contextlib.suppress(StorageError):
            await asyncio.shield(task)
        raise


__all__ = ["bounded_blob_call", "bounded_blob_write", "metadata_session"]
