"""Database engine + session factory (SQLite + Azure SQL).

- One engine per process, created at application startup.
- Services open short-lived sessions per unit of work; no session is held
  across blob storage I/O.
- SQLite: WAL + busy_timeout + a single pooled connection.
- Azure SQL: pooled connections + pre-ping + recycle, optional managed
  identity token injection via azure-identity.
"""

from __future__ import annotations

import asyncio
import struct
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from azure.identity import DefaultAzureCredential
from sqlalchemy import event, text
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from casedocs_api.settings import Settings

__all__ = [
    "Database",
    "DatabaseAuthMode",
    "DatabaseConfig",
    "attach_managed_identity",
    "build_async_url",
    "build_sync_url",
    "db",
    "ensure_sqlite_parent_dir",
    "ping",
    "session_scope",
]

DatabaseAuthMode = Literal["sql_password", "managed_identity"]

_SQL_COPT_SS_ACCESS_TOKEN = 1256
_AZURE_SQL_SCOPE = "https://database.windows.net/.default"


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    """Connection settings for the metadata store.

    ``url`` may be given in sync or async form; the runtime converts
    ``sqlite`` to ``sqlite+aiosqlite`` and ``mssql+pyodbc`` to
    ``mssql+aioodbc``. Alembic uses the sync form.
    """

    url: str
    echo: bool = False

    auth_mode: DatabaseAuthMode = "sql_password"
    managed_identity_client_id: str | None = None

    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800

    sqlite_journal_mode: str = "WAL"
    sqlite_synchronous: str = "NORMAL"
    sqlite_busy_timeout_ms: int = 30_000

    @classmethod
    def from_settings(cls, settings: Settings) -> DatabaseConfig:
        return cls(
            url=settings.database_url or "",
            echo=bool(settings.database_echo),
            auth_mode=settings.database_auth_mode,
            managed_identity_client_id=settings.database_mi_client_id,
            pool_size=int(settings.database_pool_size),
            max_overflow=int(settings.database_max_overflow),
            pool_timeout=int(settings.database_pool_timeout),
            sqlite_journal_mode=settings.database_sqlite_journal_mode.strip().upper(),
            sqlite_synchronous=settings.database_sqlite_synchronous.strip().upper(),
            sqlite_busy_timeout_ms=int(settings.database_sqlite_busy_timeout_ms),
        )


# ---- URL helpers ------------------------------------------------------------

def _supported_backend(url: URL) -> str:
    backend = url.get_backend_name()
    if backend not in {"sqlite", "mssql"}:
        raise ValueError("Only SQLite and SQL Server (Azure SQL) are supported.")
    return backend


def _is_sqlite_memory(url: URL) -> bool:
    database = (url.database or "").strip()
    if not database or database == ":memory:":
        return True
    return database.startswith("file:") and (url.query or {}).get("mode") == "memory"


def ensure_sqlite_parent_dir(url: URL) -> None:
    database = (url.database or "").strip()
    if not database or database == ":memory:" or database.startswith("file:"):
        return
    path = Path(database)
    if not path.is_absolute():
        path = (Path.cwd() / path).resolve()
    path.parent.mkdir(parents=True, exist_ok=True)


def _mssql_with_defaults(url: URL, cfg: DatabaseConfig) -> URL:
    query = dict(url.query or {})
    query.setdefault("driver", "ODBC Driver 18 for SQL Server")
    if cfg.auth_mode == "managed_identity":
        url = url._replace(username=None, password=None)
        for key in ("Authentication", "authentication", "Trusted_Connection", "trusted_connection"):
            query.pop(key, None)
    return url.set(query=query)


def _with_driver(cfg: DatabaseConfig, *, sqlite_driver: str, mssql_driver: str) -> str:
    url = make_url(cfg.url)
    if _supported_backend(url) == "sqlite":
        return url.set(drivername=sqlite_driver).render_as_string(hide_password=False)

    if url.drivername not in {"mssql", "mssql+pyodbc", "mssql+aioodbc"}:
        raise ValueError("For SQL Server provide mssql+pyodbc://... or mssql+aioodbc://...")
    url = _mssql_with_defaults(url.set(drivername=mssql_driver), cfg)
    return url.render_as_string(hide_password=False)


def build_sync_url(cfg: DatabaseConfig) -> str:
    """Return the *sync* SQLAlchemy URL string (for Alembic)."""
    return _with_driver(cfg, sqlite_driver="sqlite", mssql_driver="mssql+pyodbc")


def build_async_url(cfg: DatabaseConfig) -> str:
    """Return the *async* SQLAlchemy URL string (for runtime)."""
    return _with_driver(cfg, sqlite_driver="sqlite+aiosqlite", mssql_driver="mssql+aioodbc")


def _build_engine_kwargs(url: URL, cfg: DatabaseConfig) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"echo": cfg.echo, "pool_pre_ping": True}

    if _supported_backend(url) == "sqlite":
        kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": cfg.sqlite_busy_timeout_ms / 1000.0,
        }
        if _is_sqlite_memory(url):
            kwargs["poolclass"] = StaticPool
        else:
            kwargs.update(pool_size=1, max_overflow=0, pool_timeout=max(1, cfg.pool_timeout))
    else:
        kwargs.update(
            pool_size=cfg.pool_size,
            max_overflow=cfg.max_overflow,
            pool_timeout=cfg.pool_timeout,
            pool_recycle=cfg.pool_recycle,
        )
    return kwargs


# ---- Managed Identity injection --------------------------------------------

def attach_managed_identity(sync_engine: Engine, *, client_id: str | None) -> None:
    """Inject an Azure AD access token into every new ODBC connection."""
    if getattr(sync_engine, "_casedocs_mi_attached", False):
        return

    credential = DefaultAzureCredential(managed_identity_client_id=client_id or None)

    def _token_bytes() -> bytes:
        token = credential.get_token(_AZURE_SQL_SCOPE).token
        raw = token.encode("utf-16-le")
        return struct.pack("<I", len(raw)) + raw

    @event.listens_for(sync_engine, "do_connect", insert=True)
    def _inject(_dialect, _conn_rec, _cargs, cparams):
        attrs_before = dict(cparams.pop("attrs_before", {}) or {})
        attrs_before[_SQL_COPT_SS_ACCESS_TOKEN] = _token_bytes()
        cparams["attrs_before"] = attrs_before
        for key in ("user", "username", "password"):
            cparams.pop(key, None)

    sync_engine._casedocs_mi_attached = True


# ---- Database object --------------------------------------------------------

class Database:
    """Holds the process-wide engine + sessionmaker.

    Call ``init(cfg)`` once on startup and ``await dispose()`` on shutdown.
    """

    def __init__(self) -> None:
        self._cfg: DatabaseConfig | None = None
        self._engine: AsyncEngine | None = None
        self._sessionmaker: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call db.init(...) at startup.")
        return self._engine

    @property
    def sessionmaker(self) -> async_sessionmaker[AsyncSession]:
        if self._sessionmaker is None:
            raise RuntimeError("Database not initialized. Call db.init(...) at startup.")
        return self._sessionmaker

    @property
    def initialized(self) -> bool:
        return self._engine is not None

    def init(self, cfg: DatabaseConfig) -> None:
        """Create engine + sessionmaker (idempotent for identical config)."""
        if self._cfg == cfg and self._engine is not None:
            return

        async_url = build_async_url(cfg)
        url_obj = make_url(async_url)
        backend = _supported_backend(url_obj)
        if backend == "sqlite":
            ensure_sqlite_parent_dir(url_obj)

        engine = create_async_engine(async_url, **_build_engine_kwargs(url_obj, cfg))

        if backend == "mssql" and cfg.auth_mode == "managed_identity":
            attach_managed_identity(engine.sync_engine, client_id=cfg.managed_identity_client_id)

        if backend == "sqlite":
            journal_mode = cfg.sqlite_journal_mode
            synchronous = cfg.sqlite_synchronous
            busy_ms = int(cfg.sqlite_busy_timeout_ms)

            @event.listens_for(engine.sync_engine, "connect")
            def _sqlite_on_connect(dbapi_conn, _):
                cur = dbapi_conn.cursor()
                try:
                    cur.execute("PRAGMA foreign_keys=ON")
                    cur.execute(f"PRAGMA busy_timeout={busy_ms}")
                    cur.execute(f"PRAGMA journal_mode={journal_mode}")
                    cur.execute(f"PRAGMA synchronous={synchronous}")
                finally:
                    cur.close()

        self._cfg = cfg
        self._engine = engine
        self._sessionmaker = async_sessionmaker(
            bind=engine,
            expire_on_commit=False,
            autoflush=False,
        )

    async def dispose(self) -> None:
        """Dispose engine (call on shutdown)."""
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None
        self._cfg = None


db = Database()


@asynccontextmanager
async def session_scope(
    sessionmaker: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """Yield a session that commits on success and rolls back on error."""
    session = (sessionmaker or db.sessionmaker)()
    try:
        yield session
        await session.commit()
    except BaseException:
        await session.rollback()
        raise
    finally:
        await asyncio.shield(session.close())


async def ping(sessionmaker: async_sessionmaker[AsyncSession] | None = None) -> None:
    """Run ``SELECT 1``; raises on connectivity problems."""
    async with session_scope(sessionmaker) as session:
        await session.execute(text("SELECT 1"))
