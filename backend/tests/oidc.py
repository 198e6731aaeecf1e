"""Locally generated provider keys and identity tokens for external login tests."""

import time
from datetime import datetime, timedelta, timezone

import httpx
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwk, jwt

from app.services import identity_tokens

KID = "test-key-1"


def _generate_pem_pair() -> tuple[str, str]:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_pem = (
        key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode("utf-8")
    )
    return private_pem, public_pem


PRIVATE_PEM, PUBLIC_PEM = _generate_pem_pair()
FOREIGN_PRIVATE_PEM, _ = _generate_pem_pair()


def provider_jwks(kid: str = KID) -> dict:
    public = jwk.construct(PUBLIC_PEM, algorithm="RS256").to_dict()
    public.update({"kid": kid, "use": "sig"})
    return {"keys": [public]}


def install_provider_keys() -> None:
    """Preload the JWKS cache for every provider so no network is needed."""
    jwks = provider_jwks()
    for url in (
        identity_tokens.APPLE_JWKS_URL,
        identity_tokens.GOOGLE_JWKS_URL,
        identity_tokens.MICROSOFT_JWKS_URL.format(tenant="common"),
    ):
        identity_tokens._jwks_cache[url] = (time.monotonic(), jwks)


def make_id_token(claims: dict, private_pem: str = PRIVATE_PEM, kid: str = KID) -> str:
    return jwt.encode(claims, private_pem, algorithm="RS256", headers={"kid": kid})


def google_claims(sub: str = "google-user-1", email: str | None = "jane@gmail.test", **extra) -> dict:
    now = datetime.now(timezone.utc)
    claims = {
        "iss": "https://accounts.google.com",
        "aud": "test-client-id",
        "sub": sub,
        "name": "Jane Doe",
        "given_name": "Jane",
        "family_name": "Doe",
        "iat": now,
        "exp": now + timedelta(minutes=5),
    }
    if email is not None:
        claims["email"] = email
        claims["email_verified"] = True
    claims.update(extra)
    return claims


class FakeProviderClient:
    """Stands in for the shared httpx client: answers token endpoint POSTs with a canned body."""

    def __init__(self, body: dict | None = None, status_code: int = 200, exc: Exception | None = None):
        self.body = body or {}
        self.status_code = status_code
        self.exc = exc
        self.posts: list[tuple[str, dict]] = []

    async def post(self, url: str, data: dict | None = None, timeout: float | None = None):
        self.posts.append((url, data or {}))
        if self.exc is not None:
            raise self.exc
        return httpx.Response(self.status_code, json=self.body, request=httpx.Request("POST", url))


TENANT_ID = "9188040d-6c67-4c5b-b112-36a304b66dad"


def microsoft_claims(tenant_id: str = TENANT_ID, **extra) -> dict:
    now = datetime.now(timezone.utc)
    claims = {
        "iss": f"https://login.microsoftonline.com/{tenant_id}/v2.0",
        "tid": tenant_id,
        "aud": "test-client-id",
        "sub": "ms-subject",
        "preferred_username": "jane@contoso.test",
        "name": "Jane Doe",
        "iat": now,
        "exp": now + timedelta(minutes=5),
    }
    claims.update(extra)
    return claims


def apple_claims(**extra) -> dict:
    now = datetime.now(timezone.utc)
    claims = {
        "iss": "https://appleid.apple.com",
        "aud": "test-client-id",
        "sub": "001234.abcdef",
        "email": "hidden@privaterelay.appleid.test",
        "email_verified": "true",
        "iat": now,
        "exp": now + timedelta(minutes=5),
    }
    claims.update(extra)
    return claims
