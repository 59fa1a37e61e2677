"""Programmatic Alembic runner used for migrate-on-startup and tests."""

from __future__ import annotations

import asyncio
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy.engine import make_url

from casedocs_api.settings import Settings

from .database import DatabaseConfig, ensure_sqlite_parent_dir, build_sync_url

__all__ = ["alembic_config", "default_alembic_ini_path", "run_migrations", "run_migrations_async"]

DEFAULT_MIGRATION_TIMEOUT_S = 60.0


def default_alembic_ini_path() -> Path:
    # src/casedocs_api/db/migrations.py -> parents[3] == repository root
    return Path(__file__).resolve().parents[3] / "alembic.ini"


def alembic_config(settings: Settings) -> Config:
    alembic_ini = default_alembic_ini_path()
    if not alembic_ini.exists():
        raise FileNotFoundError(f"Alembic config not found at {alembic_ini}")

    sync_url = build_sync_url(DatabaseConfig.from_settings(settings))
    ensure_sqlite_parent_dir(make_url(sync_url))

    config = Config(str(alembic_ini))
    config.set_main_option("script_location", str(alembic_ini.parent / "migrations"))
    # ConfigParser interpolation treats '%' specially (URL-encoded passwords).
    config.set_main_option("sqlalchemy.url", sync_url.replace("%", "%%"))
    config.attributes["configure_logger"] = False
    config.attributes["settings"] = settings
    return config


def run_migrations(settings: Settings, *, revision: str = "head") -> None:
    command.upgrade(alembic_config(settings), revision)


async def run_migrations_async(
    settings: Settings,
    *,
    revision: str = "head",
    timeout_seconds: float | None = DEFAULT_MIGRATION_TIMEOUT_S,
) -> None:
    try:
        async with asyncio.timeout(timeout_seconds):
            await asyncio.to_thread(run_migrations, settings, revision=revision)
    except TimeoutError as exc:
        raise RuntimeError(
            f"Database migrations did not finish within {timeout_seconds} seconds"
        ) from exc
