"""DB package exports."""

from .base import NAMING_CONVENTION, Base, metadata, new_uuid, utc_now
from .database import (
    Database,
    DatabaseConfig,
    build_async_url,
    build_sync_url,
    db,
    ping,
    session_scope,
)
from .types import JSONList, UTCDateTime, UUIDType

__all__ = [
    "Base",
    "Database",
    "DatabaseConfig",
    "JSONList",
    "NAMING_CONVENTION",
    "UTCDateTime",
    "UUIDType",
    "build_async_url",
    "build_sync_url",
    "db",
    "metadata",
    "new_uuid",
    "ping",
    "session_scope",
    "utc_now",
]
