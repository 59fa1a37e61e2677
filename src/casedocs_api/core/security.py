"""Azure AD bearer token verification and principal dependencies."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Annotated, Any

import jwt
from fastapi import Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from casedocs_api.common.problem_details import ApiError
from casedocs_api.settings import Settings

logger = logging.getLogger(__name__)

TOKEN_ALGORITHMS = ("RS256",)

_bearer = HTTPBearer(auto_error=False)
_jwks_clients: dict[str, PyJWKClient] = {}


class AuthenticationError(RuntimeError):
    """Raised when a bearer token cannot be verified."""


@dataclass(frozen=True, slots=True)
class Principal:
    id: str
    name: str
    email: str | None = None
    roles: tuple[str, ...] = field(default_factory=tuple)

    def has_any_role(self, roles: list[str] | tuple[str, ...]) -> bool:
        return any(role in self.roles for role in roles)


KeyResolver = Callable[[str], Any]


def _get_jwks_client(jwks_uri: str) -> PyJWKClient:
    client = _jwks_clients.get(jwks_uri)
    if client is None:
        client = PyJWKClient(jwks_uri, cache_keys=True, cache_jwk_set=True, lifespan=300)
        _jwks_clients[jwks_uri] = client
    return client


class TokenVerifier:
    """Validate Azure AD access tokens against the tenant's signing keys.

    ``key_resolver`` maps a raw token to its verification key; it defaults to
    a cached :class:`~jwt.PyJWKClient` for the tenant JWKS endpoint.
    """

    def __init__(
        self,
        *,
        issuer: str,
        audience: str,
        key_resolver: KeyResolver,
    ) -> None:
        self._issuer = issuer
        self._audience = audience
        self._key_resolver = key_resolver

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenVerifier:
        if not settings.auth_issuer or not settings.auth_jwks_url or not settings.auth_client_id:
            raise ValueError("Azure AD tenant and client id are required for token verification")
        client = _get_jwks_client(settings.auth_jwks_url)
        return cls(
            issuer=settings.auth_issuer,
            audience=settings.auth_client_id,
            key_resolver=lambda token: client.get_signing_key_from_jwt(token).key,
        )

    def verify(self, token: str) -> Principal:
        try:
            key = self._key_resolver(token)
            claims = jwt.decode(
                token,
                key,
                algorithms=list(TOKEN_ALGORITHMS),
                audience=self._audience,
                issuer=self._issuer,
                options={"require": ["exp", "iss", "aud"]},
            )
        except jwt.PyJWTError as exc:
            raise AuthenticationError(str(exc)) from exc

        subject = claims.get("oid") or claims.get("sub")
        if not subject:
            raise AuthenticationError("Token has no subject")
        email = claims.get("preferred_username") or claims.get("email") or claims.get("upn")
        roles = claims.get("roles") or []
        return Principal(
            id=str(subject),
            name=str(claims.get("name") or email or subject),
            email=str(email) if email else None,
            roles=tuple(str(role) for role in roles),
        )


def dev_principal(settings: Settings) -> Principal:
    """Return a synthetic principal for ``auth_disabled`` mode."""

    seed = settings.auth_disabled_user_email or "developer@example.com"
    return Principal(
        id=str(uuid.uuid5(uuid.NAMESPACE_URL, f"casedocs-dev:{seed}")),
        name=settings.auth_disabled_user_name,
        email=seed,
        roles=tuple(settings.auth_manage_roles),
    )


def _unauthorized(detail: str) -> ApiError:
    return ApiError(
        error_type="unauthorized",
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_principal(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)],
) -> Principal:
    settings: Settings = request.app.state.settings
    if settings.auth_disabled:
        return dev_principal(settings)

    if credentials is None or not credentials.credentials:
        raise _unauthorized("Authentication required")

    verifier: TokenVerifier = request.app.state.token_verifier
    try:
        # Key lookup may fetch the JWKS document.
        return await run_in_threadpool(verifier.verify, credentials.credentials)
    except AuthenticationError as exc:
        logger.info("auth.token.rejected", extra={"reason": str(exc)})
        raise _unauthorized("Invalid or expired token") from exc


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]


async def require_manager(request: Request, principal: CurrentPrincipal) -> Principal:
    """Allow the request only for principals holding a management role."""

    settings: Settings = request.app.state.settings
    roles = settings.auth_manage_roles
    if roles and not principal.has_any_role(roles):
        raise ApiError(
            error_type="forbidden",
            detail="This action requires a document management role.",
        )
    return principal


ManagerPrincipal = Annotated[Principal, Depends(require_manager)]


__all__ = [
    "AuthenticationError",
    "CurrentPrincipal",
    "ManagerPrincipal",
    "Principal",
    "TokenVerifier",
    "dev_principal",
    "get_current_principal",
    "require_manager",
]
