"""Alembic environment configuration (SQLite / SQL Server)."""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool
from sqlalchemy.engine import make_url

from casedocs_api.db import Base, DatabaseConfig, build_sync_url
from casedocs_api.db.database import attach_managed_identity
from casedocs_api.settings import get_settings

config = context.config

if config.config_file_name is not None and config.attributes.get("configure_logger", True):
    fileConfig(config.config_file_name)


def _import_models() -> None:
    import casedocs_api.features.documents.models  # noqa: F401


_import_models()
target_metadata = Base.metadata


def _database_config() -> DatabaseConfig:
    cfg = DatabaseConfig.from_settings(config.attributes.get("settings") or get_settings())
    override_url = config.get_main_option("sqlalchemy.url")
    if override_url:
        return DatabaseConfig(
            url=override_url.replace("%%", "%"),
            auth_mode=cfg.auth_mode,
            managed_identity_client_id=cfg.managed_identity_client_id,
        )
    return cfg


def run_migrations_offline() -> None:
    context.configure(
        url=build_sync_url(_database_config()),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    existing_connection = config.attributes.get("connection")
    if existing_connection is not None:
        context.configure(connection=existing_connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()
        return

    cfg = _database_config()
    url = build_sync_url(cfg)
    engine = create_engine(url, poolclass=pool.NullPool)
    if make_url(url).get_backend_name() == "mssql" and cfg.auth_mode == "managed_identity":
        attach_managed_identity(engine, client_id=cfg.managed_identity_client_id)
    try:
        with engine.connect() as connection:
            context.configure(
                connection=connection,
                target_metadata=target_metadata,
                render_as_batch=connection.dialect.name == "sqlite",
            )
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
