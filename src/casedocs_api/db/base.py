"""Declarative base, naming convention and shared column helpers."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "metadata",
    "new_uuid",
    "utc_now",
]

NAMING_CONVENTION: dict[str, str] = {
    "ix": "%(table_name)s_%(column_0_name)s_idx",
    "uq": "%(table_name)s_%(column_0_name)s_key",
    "ck": "%(table_name)s_%(constraint_name)s_check",
    "fk": "%(table_name)s_%(column_0_name)s_fkey",
    "pk": "%(table_name)s_pkey",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)


class Base(DeclarativeBase):
    """Declarative base using the global naming convention."""

    metadata = metadata


def utc_now() -> datetime:
    return datetime.now(UTC)


def _uuid_factory() -> Callable[[], uuid.UUID]:
    # uuid7 (time ordered) is only in the stdlib from Python 3.14.
    factory = getattr(uuid, "uuid7", None)
    return factory if callable(factory) else uuid.uuid4


new_uuid = _uuid_factory()
