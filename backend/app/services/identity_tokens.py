"""
Verification of provider-issued OpenID Connect identity tokens.

Each provider publishes its own JWK set and issuer; signatures are checked with
python-jose against the provider keys, audience is the AuthClient client_id.
Key sets are cached per process and refetched when a token names an unknown kid.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx
from jose import jwt
from jose.exceptions import JOSEError

from app.core.errors import InvalidIdentityToken, ProviderRequestFailed
from app.models.auth_client import AuthClient, AuthClientType
from app.services.http_client import get_http_client

logger = logging.getLogger(__name__)

APPLE_JWKS_URL = "https://appleid.apple.com/auth/keys"
APPLE_ISSUER = "https://appleid.apple.com"
GOOGLE_JWKS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = ("https://accounts.google.com", "accounts.google.com")
MICROSOFT_JWKS_URL = "https://login.microsoftonline.com/{tenant}/discovery/v2.0/keys"
MICROSOFT_ISSUER = "https://login.microsoftonline.com/{tid}/v2.0"

JWKS_CACHE_SECONDS = 3600
SUPPORTED_ALGORITHMS = ["RS256"]

# url -> (fetched_at, jwks)
_jwks_cache: dict[str, tuple[float, dict[str, Any]]] = {}


@dataclass(frozen=True)
class OAuthUser:
    """Identity claims extracted from a verified identity token."""

    unique_id: str
    email: str | None
    # Only a provider-verified email may be matched against local accounts
    email_verified: bool = False
    name: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    nonce: str | None = None

    @property
    def display_name(self) -> str | None:
        if self.name:
            return self.name
        parts = [p for p in (self.given_name, self.family_name) if p]
        return " ".join(parts) or None


def clear_jwks_cache() -> None:
    _jwks_cache.clear()


async def _fetch_jwks(url: str) -> dict[str, Any]:
    try:
        r = await get_http_client().get(url)
        r.raise_for_status()
        data = r.json()
    except (httpx.HTTPError, ValueError) as e:
        raise ProviderRequestFailed(f"Cannot download signing keys from {url}: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get("keys"), list):
        raise ProviderRequestFailed(f"Malformed key set from {url}")
    _jwks_cache[url] = (time.monotonic(), data)
    return data


async def get_jwks(url: str, kid: str | None = None) -> dict[str, Any]:
    """Cached JWK set for url; refetched when stale or when kid is not in it."""
    cached = _jwks_cache.get(url)
    if cached is not None:
        fetched_at, jwks = cached
        fresh = time.monotonic() - fetched_at < JWKS_CACHE_SECONDS
        known = kid is None or any(k.get("kid") == kid for k in jwks["keys"])
        if fresh and known:
            return jwks
    return await _fetch_jwks(url)


def _unverified_kid(id_token: str) -> str | None:
    try:
        return jwt.get_unverified_header(id_token).get("kid")
    except JOSEError as e:
        raise InvalidIdentityToken(f"Malformed identity token header: {e}") from e


async def _decode(
    id_token: str,
    jwks_url: str,
    audience: str,
    issuer: str | tuple[str, ...] | None,
    access_token: str | None,
) -> dict[str, Any]:
    jwks = await get_jwks(jwks_url, _unverified_kid(id_token))
    options = {"verify_at_hash": bool(access_token), "verify_iss": issuer is not None}
    try:
        return jwt.decode(
            id_token,
            jwks,
            algorithms=SUPPORTED_ALGORITHMS,
            audience=audience,
            issuer=issuer,
            access_token=access_token,
            options=options,
        )
    except JOSEError as e:
        raise InvalidIdentityToken(f"Identity token verification failed: {e}") from e


def _is_true(value: Any) -> bool:
    # Apple sends boolean claims as the strings "true"/"false"
    if isinstance(value, str):
        return value.lower() == "true"
    return value is True


def _require_subject(claims: dict[str, Any]) -> str:
    subject = claims.get("sub")
    if not subject:
        raise InvalidIdentityToken("Identity token has no subject")
    return str(subject)


async def verify_apple(id_token: str, client_id: str, access_token: str | None = None) -> OAuthUser:
    # Apple sends the user's name only in the first form_post, never in the identity token
    claims = await _decode(id_token, APPLE_JWKS_URL, client_id, APPLE_ISSUER, access_token)
    return OAuthUser(
        unique_id=_require_subject(claims),
        email=claims.get("email"),
        email_verified=_is_true(claims.get("email_verified")),
        nonce=claims.get("nonce"),
    )


async def verify_google(id_token: str, client_id: str, access_token: str | None = None) -> OAuthUser:
    claims = await _decode(id_token, GOOGLE_JWKS_URL, client_id, GOOGLE_ISSUERS, access_token)
    return OAuthUser(
        unique_id=_require_subject(claims),
        email=claims.get("email"),
        email_verified=_is_true(claims.get("email_verified")),
        name=claims.get("name"),
        given_name=claims.get("given_name"),
        family_name=claims.get("family_name"),
        nonce=claims.get("nonce"),
    )


async def verify_microsoft(
    id_token: str,
    client_id: str,
    tenant: str | None = None,
    access_token: str | None = None,
) -> OAuthUser:
    jwks_url = MICROSOFT_JWKS_URL.format(tenant=tenant or "common")
    # Multi-tenant apps get tenant-specific issuers; checked against the tid claim below
    claims = await _decode(id_token, jwks_url, client_id, None, access_token)
    tid = claims.get("tid")
    if not tid or claims.get("iss") != MICROSOFT_ISSUER.format(tid=tid):
        raise InvalidIdentityToken(f"Unexpected Microsoft issuer {claims.get('iss')!r}")
    return OAuthUser(
        unique_id=_require_subject(claims),
        # preferred_username is editable by the tenant and never treated as an email
        email=claims.get("email"),
        email_verified=_is_true(claims.get("xms_edov")),
        name=claims.get("name"),
        given_name=claims.get("given_name"),
        family_name=claims.get("family_name"),
        nonce=claims.get("nonce"),
    )


async def verify_identity_token(
    auth_client: AuthClient,
    id_token: str,
    client_id: str,
    access_token: str | None = None,
) -> OAuthUser:
    """Dispatch to the verifier for auth_client.type."""
    if auth_client.type == AuthClientType.apple:
        return await verify_apple(id_token, client_id, access_token)
    if auth_client.type == AuthClientType.google:
        return await verify_google(id_token, client_id, access_token)
    if auth_client.type == AuthClientType.microsoft:
        return await verify_microsoft(id_token, client_id, auth_client.tenant, access_token)
    raise InvalidIdentityToken(f"Unsupported provider type {auth_client.type!r}")
