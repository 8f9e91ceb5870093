"""OIDC bearer authentication for the merchant dashboard.

Tokens are RS256 JWTs from the configured issuer. Signing keys come from the
issuer's JWKS, cached per process; an unknown kid or a signature mismatch
forces one refresh so key rotation does not lock users out. The verified
subject is then mapped to a local users row.

Environment:
    OIDC_ISSUER, OIDC_AUDIENCE, OIDC_JWKS_URL   all required
    OIDC_AUTHORIZED_PARTIES                     optional, comma separated azp allow-list
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from typing import Any

import jwt
import requests
from fastapi import HTTPException, Request

from reservio.infra.db import txn

JWKS_CACHE_TTL_SECONDS = 600


@dataclass
class CurrentUser:
    """Authenticated dashboard user."""

    id: str
    external_subject: str
    email: str | None
    name: str | None


@dataclass(frozen=True)
class OidcSettings:
    issuer: str | None
    audience: str | None
    jwks_url: str | None
    authorized_parties: tuple[str, ...]

    @classmethod
    def from_env(cls) -> OidcSettings:
        raw_parties = os.environ.get("OIDC_AUTHORIZED_PARTIES", "")
        return cls(
            issuer=os.environ.get("OIDC_ISSUER"),
            audience=os.environ.get("OIDC_AUDIENCE"),
            jwks_url=os.environ.get("OIDC_JWKS_URL"),
            authorized_parties=tuple(p.strip() for p in raw_parties.split(",") if p.strip()),
        )

    @property
    def configured(self) -> bool:
        return bool(self.issuer and self.audience and self.jwks_url)


def _fetch_jwks(jwks_url: str) -> dict[str, Any]:
    resp = requests.get(jwks_url, timeout=10)
    resp.raise_for_status()
    return resp.json()


class JwksCache:
    """Process-wide JWKS cache keyed by nothing but age."""

    def __init__(self, ttl_seconds: int = JWKS_CACHE_TTL_SECONDS) -> None:
        self.ttl_seconds = ttl_seconds
        self._keys: dict[str, Any] | None = None
        self._fetched_at = 0.0
        self._lock = threading.Lock()

    def clear(self) -> None:
        with self._lock:
            self._keys = None
            self._fetched_at = 0.0

    def get(self, jwks_url: str, *, refresh: bool = False) -> dict[str, Any]:
        with self._lock:
            now = time.time()
            stale = self._keys is None or now - self._fetched_at >= self.ttl_seconds
            if refresh or stale:
                try:
                    self._keys = _fetch_jwks(jwks_url)
                except requests.RequestException:
                    raise HTTPException(status_code=503, detail="Auth temporarily unavailable")
                self._fetched_at = now
            return self._keys

    def find(self, jwks_url: str, kid: str, *, refresh: bool = False) -> dict[str, Any] | None:
        for key in self.get(jwks_url, refresh=refresh).get("keys", []):
            if key.get("kid") == kid:
                return key
        return None


jwks_cache = JwksCache()


def _invalid(detail: str = "Invalid token") -> HTTPException:
    return HTTPException(status_code=401, detail=detail)


def _decode(token: str, jwk_data: dict[str, Any], settings: OidcSettings) -> dict[str, Any]:
    try:
        public_key = jwt.algorithms.RSAAlgorithm.from_jwk(jwk_data)
    except (jwt.InvalidKeyError, ValueError, KeyError):
        raise _invalid()

    return jwt.decode(
        token,
        public_key,
        algorithms=["RS256"],
        issuer=settings.issuer,
        audience=settings.audience,
        options={"require": ["exp", "iss", "aud", "sub"]},
    )


def _verified_claims(token: str, kid: str, settings: OidcSettings) -> dict[str, Any]:
    """Decode with the cached key, retrying once against a refreshed JWKS."""
    for refresh in (False, True):
        key_data = jwks_cache.find(settings.jwks_url, kid, refresh=refresh)
        if key_data is None:
            continue
        try:
            return _decode(token, key_data, settings)
        except jwt.InvalidSignatureError:
            continue
        except jwt.ExpiredSignatureError:
            raise _invalid("Token expired")
        except jwt.InvalidTokenError:
            raise _invalid()
    raise _invalid()


def verify_token(token: str) -> str:
    """Verify a dashboard JWT and return its subject.

    Raises:
        HTTPException: 401 for any invalid token or when OIDC is not
            configured, 503 when the JWKS endpoint is unreachable.
    """
    settings = OidcSettings.from_env()
    if not settings.configured:
        raise _invalid("OIDC not configured")

    try:
        kid = jwt.get_unverified_header(token).get("kid")
    except jwt.exceptions.DecodeError:
        raise _invalid()
    if not kid:
        raise _invalid()

    claims = _verified_claims(token, kid, settings)

    azp = claims.get("azp")
    if settings.authorized_parties and azp is not None and azp not in settings.authorized_parties:
        raise _invalid()

    sub = claims.get("sub")
    if not sub:
        raise _invalid()
    return sub


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise _invalid("Missing authorization header")

    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip() or " " in token.strip():
        raise _invalid("Invalid authorization header")
    return token.strip()


def _get_user_from_db(external_subject: str) -> CurrentUser | None:
    with txn(read_only=True) as cur:
        cur.execute(
            "SELECT id, external_subject, email, name FROM users WHERE external_subject = %s",
            (external_subject,),
        )
        row = cur.fetchone()
    if row is None:
        return None
    return CurrentUser(id=str(row[0]), external_subject=row[1], email=row[2], name=row[3])


def get_current_user(request: Request) -> CurrentUser:
    """FastAPI dependency: the dashboard user behind the bearer token.

    Raises:
        HTTPException: 401 for a missing or invalid token, 403 when no local
            user matches the subject.
    """
    user = _get_user_from_db(verify_token(_bearer_token(request)))
    if user is None:
        raise HTTPException(status_code=403, detail="User not found")
    return user
