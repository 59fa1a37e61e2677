from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from casedocs_api.settings import MEGABYTE, Settings, get_settings, reload_settings


def _settings(**values) -> Settings:
    values.setdefault("auth_disabled", True)
    return Settings(_env_file=None, **values)


def test_settings_defaults(tmp_path: Path) -> None:
    """Defaults should mirror the Settings model without .env overrides."""

    settings = _settings()

    assert settings.storage_backend == "filesystem"
    assert settings.storage_root == (tmp_path / "data" / "blobs").resolve()
    sqlite_path = (tmp_path / "data" / "db" / "casedocs.sqlite").resolve()
    assert settings.database_url == f"sqlite:///{sqlite_path.as_posix()}"
    assert settings.documents_upload_max_bytes == 100 * MEGABYTE
    assert settings.documents_checksum_algorithm == "sha256"
    assert settings.documents_signed_url_ttl == timedelta(hours=1)
    assert settings.blob_upload_timeout == timedelta(minutes=15)
    assert settings.rate_limit_window == timedelta(minutes=15)
    assert settings.server_cors_origins == ["http://localhost:5173"]


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CASEDOCS_AUTH_DISABLED", "true")
    monkeypatch.setenv("CASEDOCS_DOCUMENTS_SIGNED_URL_TTL", "15m")
    monkeypatch.setenv("CASEDOCS_BLOB_REQUEST_TIMEOUT", "90")
    monkeypatch.setenv("CASEDOCS_SERVER_CORS_ORIGINS", "http://a.test, http://b.test,http://a.test")
    monkeypatch.setenv("CASEDOCS_AUTH_MANAGE_ROLES", '["DocumentManager", "Admin"]')
    monkeypatch.setenv("CASEDOCS_SERVER_PUBLIC_URL", "https://docs.example.org/")

    settings = reload_settings()

    assert settings.documents_signed_url_ttl == timedelta(minutes=15)
    assert settings.blob_request_timeout == timedelta(seconds=90)
    assert settings.server_cors_origins == ["http://a.test", "http://b.test"]
    assert settings.auth_manage_roles == ["DocumentManager", "Admin"]
    assert settings.server_public_url == "https://docs.example.org"
    assert get_settings() is settings


@pytest.mark.parametrize("value", ["0", "-5", "abc", "10w", ""])
def test_invalid_durations_are_rejected(value: str) -> None:
    with pytest.raises(ValidationError):
        _settings(database_timeout=value)


def test_auth_settings_are_required_unless_disabled() -> None:
    with pytest.raises(ValidationError, match="CASEDOCS_AUTH_TENANT_ID"):
        Settings(_env_file=None)

    settings = Settings(_env_file=None, auth_tenant_id="tenant", auth_client_id="client")
    assert settings.auth_issuer == "https://login.microsoftonline.com/tenant/v2.0"
    assert settings.auth_jwks_url == (
        "https://login.microsoftonline.com/tenant/discovery/v2.0/keys"
    )


def test_signing_secret_is_generated_when_missing() -> None:
    generated = _settings()
    configured = _settings(storage_signing_secret="s" * 40)

    assert generated.signing_secret_generated
    assert len(generated.storage_signing_secret_value) >= 32
    assert not configured.signing_secret_generated
    assert configured.storage_signing_secret_value == "s" * 40


def test_short_signing_secret_is_rejected() -> None:
    with pytest.raises(ValidationError, match="at least 32 characters"):
        _settings(storage_signing_secret="too-short")


def test_azure_backend_requires_account() -> None:
    with pytest.raises(ValidationError, match="CASEDOCS_BLOB_ACCOUNT_URL"):
        _settings(storage_backend="azure-blob")

    settings = _settings(
        storage_backend="azure_blob",
        blob_account_url="https://casedocs.blob.core.windows.net",
    )
    assert settings.storage_backend == "azure_blob"


def test_signed_url_ttl_cannot_exceed_maximum() -> None:
    with pytest.raises(ValidationError):
        _settings(documents_signed_url_ttl="2d", documents_signed_url_max_ttl="1d")


def test_public_url_must_be_http() -> None:
    with pytest.raises(ValidationError):
        _settings(server_public_url="ftp://files.example.org")
