"""Case documents API settings (pydantic v2, CASEDOCS_* environment)."""

from __future__ import annotations

import json
import secrets
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Literal
from urllib.parse import urlparse

from pydantic import Field, PrivateAttr, SecretStr, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import DotEnvSettingsSource, EnvSettingsSource

# ---- Defaults ---------------------------------------------------------------


DEFAULT_DATA_DIR = Path("./data")
DEFAULT_PUBLIC_URL = "http://localhost:8000"
DEFAULT_CORS_ORIGINS = ["http://localhost:5173"]
DEFAULT_DB_FILENAME = "casedocs.sqlite"
DEFAULT_SQLITE_PATH = DEFAULT_DATA_DIR / "db" / DEFAULT_DB_FILENAME
DEFAULT_STORAGE_ROOT = DEFAULT_DATA_DIR / "blobs"
DEFAULT_BLOB_CONTAINER = "client-docs"

MEGABYTE = 1024 * 1024
DEFAULT_DOCUMENTS_MAX_BYTES = 100 * MEGABYTE
DEFAULT_NOTES_MAX_BYTES = 50 * MEGABYTE
DEFAULT_CLIENT_FILES_MAX_BYTES = 15 * MEGABYTE

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500

_LENIENT_LIST_FIELDS = {"server_cors_origins", "auth_manage_roles"}

_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


# ---- Helpers ----------------------------------------------------------------

def _parse_duration(value: Any, *, field_name: str) -> timedelta:
    """Accept seconds (int/float/str) or '60s'/'5m'/'1h'/'14d'."""
    if isinstance(value, timedelta):
        seconds = value.total_seconds()
    elif isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        s = value.strip()
        if not s:
            raise ValueError(f"{field_name} must not be blank")
        try:
            seconds = float(s)
        except ValueError:
            unit = s[-1].lower()
            num = s[:-1].strip()
            if unit not in _UNIT_SECONDS or not num:
                raise ValueError(
                    f"{field_name} must be secs or 'Xs','Xm','Xh','Xd'"
                ) from None
            try:
                seconds = float(num) * _UNIT_SECONDS[unit]
            except ValueError as exc:
                raise ValueError(
                    f"{field_name} must be secs or 'Xs','Xm','Xh','Xd'"
                ) from exc
    else:
        raise TypeError(f"{field_name} must be number, duration string, or timedelta")
    if seconds <= 0:
        raise ValueError(f"{field_name} must be > 0 seconds")
    return timedelta(seconds=seconds)


def _list_from_env(value: Any, *, default: list[str]) -> list[str]:
    """JSON array or comma string; strip empties; dedupe preserving order."""
    if value in (None, "", []):
        items = list(default)
    elif isinstance(value, str):
        s = value.strip()
        if not s:
            items = list(default)
        elif s.startswith("["):
            try:
                parsed = json.loads(s)
            except json.JSONDecodeError as exc:
                raise ValueError("Expected a JSON array") from exc
            if not isinstance(parsed, list):
                raise ValueError("Expected a JSON array")
            items = [str(x).strip() for x in parsed if str(x).strip()]
        else:
            items = [seg.strip() for seg in s.split(",") if seg.strip()]
    elif isinstance(value, (list, tuple, set)):
        items = [str(x).strip() for x in value if str(x).strip()]
    else:
        raise TypeError("Expected string or list")

    seen, out = set(), []
    for x in items:
        if x not in seen:
            seen.add(x)
            out.append(x)
    return out


def _resolve_path(value: Path | str | None, *, default: Path) -> Path:
    """Expand, absolutize, and resolve a configurable path."""

    if value in (None, ""):
        candidate = default
    elif isinstance(value, Path):
        candidate = value
    else:
        candidate = Path(str(value).strip())
    return candidate.expanduser().resolve()


# ---- Settings ---------------------------------------------------------------

class _LenientEnvSettingsSource(EnvSettingsSource):
    """Environment source that preserves raw strings for list-like fields."""

    lenient_fields: ClassVar[set[str]] = _LENIENT_LIST_FIELDS

    def prepare_field_value(self, field_name: str, field, value: Any, value_is_complex: bool) -> Any:
        if field_name in self.lenient_fields and isinstance(value, str):
            return value
        return super().prepare_field_value(field_name, field, value, value_is_complex)


class _LenientDotEnvSettingsSource(DotEnvSettingsSource):
    """Dotenv source that preserves raw strings for list-like fields."""

    lenient_fields: ClassVar[set[str]] = _LENIENT_LIST_FIELDS

    def prepare_field_value(self, field_name: str, field, value: Any, value_is_complex: bool) -> Any:
        if field_name in self.lenient_fields and isinstance(value, str):
            return value
        return super().prepare_field_value(field_name, field, value, value_is_complex)


class Settings(BaseSettings):
    """FastAPI settings loaded from CASEDOCS_* environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CASEDOCS_",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
    )

    _signing_secret_generated: bool = PrivateAttr(default=False)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        env_source = _LenientEnvSettingsSource(
            settings_cls,
            case_sensitive=getattr(env_settings, "case_sensitive", None),
            env_prefix=getattr(env_settings, "env_prefix", None),
            env_nested_delimiter=getattr(env_settings, "env_nested_delimiter", None),
            env_ignore_empty=getattr(env_settings, "env_ignore_empty", None),
            env_parse_none_str=getattr(env_settings, "env_parse_none_str", None),
            env_parse_enums=getattr(env_settings, "env_parse_enums", None),
        )
        dotenv_source = _LenientDotEnvSettingsSource(
            settings_cls,
            env_file=getattr(dotenv_settings, "env_file", None),
            env_file_encoding=getattr(dotenv_settings, "env_file_encoding", None),
            case_sensitive=getattr(dotenv_settings, "case_sensitive", None),
            env_prefix=getattr(dotenv_settings, "env_prefix", None),
            env_nested_delimiter=getattr(dotenv_settings, "env_nested_delimiter", None),
            env_ignore_empty=getattr(dotenv_settings, "env_ignore_empty", None),
            env_parse_none_str=getattr(dotenv_settings, "env_parse_none_str", None),
            env_parse_enums=getattr(dotenv_settings, "env_parse_enums", None),
        )
        return (init_settings, env_source, dotenv_source, file_secret_settings)

    # Core
    app_name: str = "Case Documents API"
    app_version: str = "0.1.0"
    debug: bool = False
    api_docs_enabled: bool = False
    docs_url: str = "/docs"
    openapi_url: str = "/openapi.json"
    logging_level: str = "INFO"

    # Server
    server_public_url: str = DEFAULT_PUBLIC_URL
    server_cors_origins: list[str] = Field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))

    # Database
    database_url: str | None = None
    database_echo: bool = False
    database_pool_size: int = Field(5, ge=1)
    database_max_overflow: int = Field(10, ge=0)
    database_pool_timeout: int = Field(30, gt=0)
    database_auth_mode: Literal["sql_password", "managed_identity"] = "sql_password"
    database_mi_client_id: str | None = None
    database_sqlite_journal_mode: str = "WAL"
    database_sqlite_synchronous: str = "NORMAL"
    database_sqlite_busy_timeout_ms: int = Field(30_000, ge=0)
    database_timeout: timedelta = Field(default=timedelta(seconds=30))
    database_migrate_on_startup: bool = False

    # Storage
    storage_backend: Literal["filesystem", "azure_blob"] = "filesystem"
    storage_root: Path = Field(default=DEFAULT_STORAGE_ROOT)
    storage_signing_secret: SecretStr | None = None
    blob_account_url: str | None = None
    blob_connection_string: SecretStr | None = None
    blob_container: str = DEFAULT_BLOB_CONTAINER
    blob_prefix: str = ""
    blob_request_timeout: timedelta = Field(default=timedelta(seconds=60))
    blob_upload_timeout: timedelta = Field(default=timedelta(minutes=15))
    blob_max_concurrency: int = Field(4, ge=1)
    blob_upload_chunk_size_bytes: int = Field(4 * MEGABYTE, gt=0)
    blob_download_chunk_size_bytes: int = Field(4 * MEGABYTE, gt=0)

    # Documents
    documents_upload_max_bytes: int = Field(DEFAULT_DOCUMENTS_MAX_BYTES, gt=0)
    documents_notes_upload_max_bytes: int = Field(DEFAULT_NOTES_MAX_BYTES, gt=0)
    documents_client_files_upload_max_bytes: int = Field(DEFAULT_CLIENT_FILES_MAX_BYTES, gt=0)
    documents_checksum_algorithm: Literal["sha256", "md5"] = "sha256"
    documents_default_page_size: int = Field(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE)
    documents_max_page_size: int = Field(MAX_PAGE_SIZE, ge=1)
    documents_signed_url_ttl: timedelta = Field(default=timedelta(hours=1))
    documents_signed_url_max_ttl: timedelta = Field(default=timedelta(hours=24))

    # Auth (Azure AD bearer tokens)
    auth_disabled: bool = False
    auth_disabled_user_name: str = "Development User"
    auth_disabled_user_email: str = "developer@example.com"
    auth_tenant_id: str | None = None
    auth_client_id: str | None = None
    auth_manage_roles: list[str] = Field(default_factory=list)

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_window: timedelta = Field(default=timedelta(minutes=15))
    rate_limit_mutation_max: int = Field(30, ge=1)
    rate_limit_query_max: int = Field(200, ge=1)

    # ---- Validators ----

    @field_validator("server_public_url", mode="before")
    @classmethod
    def _v_public_url(cls, v: Any) -> str:
        s = str(v).strip()
        p = urlparse(s)
        if p.scheme not in {"http", "https"} or not p.netloc:
            raise ValueError("CASEDOCS_SERVER_PUBLIC_URL must be an http(s) URL")
        return s.rstrip("/")

    @field_validator("logging_level", mode="before")
    @classmethod
    def _v_log_level(cls, v: Any) -> str:
        s = ("" if v is None else str(v).strip()).upper()
        return s or "INFO"

    @field_validator("server_cors_origins", mode="before")
    @classmethod
    def _v_cors(cls, v: Any) -> list[str]:
        return _list_from_env(v, default=DEFAULT_CORS_ORIGINS)

    @field_validator("auth_manage_roles", mode="before")
    @classmethod
    def _v_roles(cls, v: Any) -> list[str]:
        return _list_from_env(v, default=[])

    @field_validator("database_auth_mode", mode="before")
    @classmethod
    def _v_db_auth_mode(cls, v: Any) -> str:
        if v in (None, ""):
            return "sql_password"
        mode = str(v).strip().lower()
        if mode not in {"sql_password", "managed_identity"}:
            raise ValueError(
                "CASEDOCS_DATABASE_AUTH_MODE must be 'sql_password' or 'managed_identity'"
            )
        return mode

    @field_validator("storage_backend", mode="before")
    @classmethod
    def _v_storage_backend(cls, v: Any) -> str:
        if v in (None, ""):
            return "filesystem"
        return str(v).strip().lower().replace("-", "_")

    @field_validator("blob_prefix", mode="before")
    @classmethod
    def _v_blob_prefix(cls, v: Any) -> str:
        return ("" if v is None else str(v)).strip().strip("/")

    @field_validator(
        "database_timeout",
        "blob_request_timeout",
        "blob_upload_timeout",
        "documents_signed_url_ttl",
        "documents_signed_url_max_ttl",
        "rate_limit_window",
        mode="before",
    )
    @classmethod
    def _v_durations(cls, v: Any, info: ValidationInfo) -> timedelta:
        return _parse_duration(v, field_name=info.field_name)

    @field_validator("storage_signing_secret", mode="before")
    @classmethod
    def _v_signing_secret(cls, v: Any) -> SecretStr | None:
        if v is None:
            return None
        raw = v.get_secret_value() if isinstance(v, SecretStr) else str(v or "").strip()
        if raw and len(raw) < 32:
            raise ValueError("CASEDOCS_STORAGE_SIGNING_SECRET must be at least 32 characters.")
        return SecretStr(raw) if raw else None

    # ---- Finalize ----

    @model_validator(mode="after")
    def _finalize(self) -> Settings:
        self.storage_root = _resolve_path(self.storage_root, default=DEFAULT_STORAGE_ROOT)

        if not self.database_url:
            sqlite = _resolve_path(DEFAULT_SQLITE_PATH, default=DEFAULT_SQLITE_PATH)
            self.database_url = f"sqlite:///{sqlite.as_posix()}"

        if self.documents_default_page_size > self.documents_max_page_size:
            raise ValueError(
                "CASEDOCS_DOCUMENTS_DEFAULT_PAGE_SIZE must not exceed "
                "CASEDOCS_DOCUMENTS_MAX_PAGE_SIZE"
            )
        if self.documents_signed_url_ttl > self.documents_signed_url_max_ttl:
            raise ValueError(
                "CASEDOCS_DOCUMENTS_SIGNED_URL_TTL must not exceed "
                "CASEDOCS_DOCUMENTS_SIGNED_URL_MAX_TTL"
            )

        if self.storage_backend == "azure_blob":
            if not (self.blob_account_url or self.blob_connection_string):
                raise ValueError(
                    "Azure Blob storage requires CASEDOCS_BLOB_ACCOUNT_URL or "
                    "CASEDOCS_BLOB_CONNECTION_STRING"
                )
            if not self.blob_container.strip():
                raise ValueError("CASEDOCS_BLOB_CONTAINER must not be blank")

        if not self.auth_disabled and not (self.auth_tenant_id and self.auth_client_id):
            raise ValueError(
                "Set CASEDOCS_AUTH_TENANT_ID and CASEDOCS_AUTH_CLIENT_ID, "
                "or CASEDOCS_AUTH_DISABLED=true for local development"
            )

        if self.storage_signing_secret is None:
            self.storage_signing_secret = SecretStr(secrets.token_urlsafe(64))
            self._signing_secret_generated = True

        return self

    # ---- Convenience ----

    @property
    def storage_signing_secret_value(self) -> str:
        return self.storage_signing_secret.get_secret_value()

    @property
    def signing_secret_generated(self) -> bool:
        return self._signing_secret_generated

    @property
    def auth_issuer(self) -> str | None:
        if not self.auth_tenant_id:
            return None
        return f"https://login.microsoftonline.com/{self.auth_tenant_id}/v2.0"

    @property
    def auth_jwks_url(self) -> str | None:
        if not self.auth_tenant_id:
            return None
        return f"https://login.microsoftonline.com/{self.auth_tenant_id}/discovery/v2.0/keys"


@lru_cache(maxsize=1)
def _build_settings() -> Settings:
    return Settings()


def get_settings() -> Settings:
    return _build_settings()


def reload_settings() -> Settings:
    _build_settings.cache_clear()
    return _build_settings()


__all__ = [
    "DEFAULT_CORS_ORIGINS",
    "DEFAULT_PUBLIC_URL",
    "MEGABYTE",
    "Settings",
    "get_settings",
    "reload_settings",
]
