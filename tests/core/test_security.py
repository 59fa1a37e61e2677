"""Bearer token verification and role checks."""

from __future__ import annotations

import time
from typing import Any

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import FastAPI
from httpx import AsyncClient

from casedocs_api.core.security import AuthenticationError, TokenVerifier
from casedocs_api.settings import Settings

TENANT_ID = "00000000-0000-0000-0000-00000000a11c"
CLIENT_ID = "api://casedocs"
ISSUER = f"https://login.microsoftonline.com/{TENANT_ID}/v2.0"

_PRIVATE_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)
_OTHER_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _token(key=_PRIVATE_KEY, **overrides: Any) -> str:
    now = int(time.time())
    claims: dict[str, Any] = {
        "iss": ISSUER,
        "aud": CLIENT_ID,
        "iat": now,
        "exp": now + 600,
        "oid": "7b0c5d0e-2f1a-4b3c-8d9e-0a1b2c3d4e5f",
        "name": "Jordan Caseworker",
        "preferred_username": "jordan@example.org",
        "roles": [],
    }
    claims.update(overrides)
    return jwt.encode(claims, key, algorithm="RS256")


def _verifier() -> TokenVerifier:
    public_key = _PRIVATE_KEY.public_key()
    return TokenVerifier(issuer=ISSUER, audience=CLIENT_ID, key_resolver=lambda _token: public_key)


def test_verify_maps_claims_to_principal() -> None:
    principal = _verifier().verify(_token(roles=["DocumentManager"]))

    assert principal.id == "7b0c5d0e-2f1a-4b3c-8d9e-0a1b2c3d4e5f"
    assert principal.name == "Jordan Caseworker"
    assert principal.email == "jordan@example.org"
    assert principal.has_any_role(["DocumentManager", "Admin"])


def test_verify_falls_back_to_sub_and_email() -> None:
    principal = _verifier().verify(
        _token(oid=None, sub="subject-1", name=None, preferred_username=None, email="a@b.org")
    )

    assert principal.id == "subject-1"
    assert principal.name == "a@b.org"


@pytest.mark.parametrize(
    "token",
    [
        pytest.param(lambda: _token(aud="api://someone-else"), id="wrong-audience"),
        pytest.param(lambda: _token(iss="https://evil.example/v2.0"), id="wrong-issuer"),
        pytest.param(lambda: _token(exp=int(time.time()) - 60), id="expired"),
        pytest.param(lambda: _token(key=_OTHER_KEY), id="wrong-key"),
        pytest.param(lambda: "not-a-jwt", id="garbage"),
    ],
)
def test_verify_rejects_bad_tokens(token) -> None:
    with pytest.raises(AuthenticationError):
        _verifier().verify(token())


def test_verifier_requires_tenant_settings() -> None:
    settings = Settings(_env_file=None, auth_disabled=True)

    with pytest.raises(ValueError):
        TokenVerifier.from_settings(settings)


# ---- HTTP -------------------------------------------------------------------


@pytest.fixture()
def base_env(base_env: dict[str, str], monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    overrides = {
        "CASEDOCS_AUTH_DISABLED": "false",
        "CASEDOCS_AUTH_TENANT_ID": TENANT_ID,
        "CASEDOCS_AUTH_CLIENT_ID": CLIENT_ID,
        "CASEDOCS_AUTH_MANAGE_ROLES": "DocumentManager",
    }
    for key, value in overrides.items():
        monkeypatch.setenv(key, value)
    return {**base_env, **overrides}


@pytest.fixture()
def app(app: FastAPI) -> FastAPI:
    app.state.token_verifier = _verifier()
    return app


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.asyncio
async def test_missing_token_is_unauthorized(async_client: AsyncClient) -> None:
    response = await async_client.get("/api/documents/C-1001")

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"
    assert response.json()["type"] == "unauthorized"


@pytest.mark.asyncio
async def test_invalid_token_is_unauthorized(async_client: AsyncClient) -> None:
    response = await async_client.get(
        "/api/documents/C-1001",
        headers=_auth(_token(aud="api://someone-else")),
    )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_valid_token_is_accepted(async_client: AsyncClient) -> None:
    response = await async_client.get("/api/documents/C-1001", headers=_auth(_token()))

    assert response.status_code == 200
    assert response.json() == []


@pytest.mark.asyncio
async def test_upload_records_token_identity(async_client: AsyncClient) -> None:
    response = await async_client.post(
        "/api/documents/C-1001/upload",
        headers=_auth(_token()),
        files={"file": ("id.png", b"\x89PNG\r\n\x1a\n", "image/png")},
        data={"category": "identification"},
    )

    assert response.status_code == 200, response.text
    assert response.json()["uploadedBy"] == "Jordan Caseworker"
    assert response.json()["createdBy"] == "Jordan Caseworker"


@pytest.mark.asyncio
async def test_delete_requires_manage_role(async_client: AsyncClient) -> None:
    uploaded = await async_client.post(
        "/api/documents/C-1001/upload",
        headers=_auth(_token()),
        files={"file": ("letter.txt", b"hello", "text/plain")},
    )
    document_id = uploaded.json()["documentId"]

    forbidden = await async_client.delete(
        f"/api/documents/{document_id}",
        headers=_auth(_token()),
    )
    assert forbidden.status_code == 403
    assert forbidden.json()["type"] == "forbidden"

    allowed = await async_client.delete(
        f"/api/documents/{document_id}",
        headers=_auth(_token(roles=["DocumentManager"])),
    )
    assert allowed.status_code == 200


@pytest.mark.asyncio
async def test_health_does_not_require_a_token(async_client: AsyncClient) -> None:
    response = await async_client.get("/api/health")

    assert response.status_code == 200
