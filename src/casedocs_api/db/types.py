"""Database column types shared across models."""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.types import CHAR, DateTime, Text, TypeDecorator

__all__ = ["JSONList", "UTCDateTime", "UUIDType"]


class UUIDType(TypeDecorator):
    """Platform-agnostic UUID storage.

    Uses ``UNIQUEIDENTIFIER`` on SQL Server and a 36-character string
    elsewhere. Values are always returned to Python as ``uuid.UUID``.
    """

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect: Any):
        if dialect.name == "mssql":
            from sqlalchemy.dialects.mssql import UNIQUEIDENTIFIER

            return dialect.type_descriptor(UNIQUEIDENTIFIER())
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value: Any, dialect: Any):
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return str(value)
        return str(uuid.UUID(str(value)))

    def process_result_value(self, value: Any, dialect: Any):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))

    @property
    def python_type(self) -> type[uuid.UUID]:
        return uuid.UUID


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that normalizes values to UTC.

    SQLite and ``DATETIME2`` columns drop the offset, so naive values coming
    back from the driver are treated as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    @staticmethod
    def _as_utc(value: Any) -> Any:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                return value.replace(tzinfo=UTC)
            return value.astimezone(UTC)
        return value

    def process_bind_param(self, value: Any, dialect: Any):
        return None if value is None else self._as_utc(value)

    def process_result_value(self, value: Any, dialect: Any):
        return None if value is None else self._as_utc(value)


class JSONList(TypeDecorator):
    """Ordered list of strings persisted as JSON text.

    Writes always serialize (``None`` becomes ``[]``); reads always return a
    ``list`` so callers never see the stored text.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any):
        if value is None:
            return "[]"
        if isinstance(value, str):
            raise TypeError("JSONList expects a list of strings, not a string")
        return json.dumps([str(item) for item in value], ensure_ascii=False)

    def process_result_value(self, value: Any, dialect: Any):
        if value in (None, ""):
            return []
        decoded = json.loads(value)
        if not isinstance(decoded, list):
            return [str(decoded)]
        return [str(item) for item in decoded]

    @property
    def python_type(self) -> type[list]:
        return list
