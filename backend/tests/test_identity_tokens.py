"""Tests for provider identity token verification and the JWKS cache."""

import hashlib
import time
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from jose.utils import calculate_at_hash

from app.core.errors import InvalidIdentityToken, ProviderRequestFailed
from app.services import identity_tokens
from app.services.identity_tokens import (
    GOOGLE_JWKS_URL,
    MICROSOFT_JWKS_URL,
    verify_apple,
    verify_google,
    verify_microsoft,
)
from tests.oidc import (
    FOREIGN_PRIVATE_PEM,
    TENANT_ID,
    apple_claims,
    google_claims,
    install_provider_keys,
    make_id_token,
    microsoft_claims,
    provider_jwks,
)


class FakeJwksClient:
    def __init__(self, body=None, exc: Exception | None = None):
        self.body = body
        self.exc = exc
        self.urls: list[str] = []

    async def get(self, url: str):
        self.urls.append(url)
        if self.exc is not None:
            raise self.exc
        return httpx.Response(200, json=self.body, request=httpx.Request("GET", url))


@pytest.fixture(autouse=True)
def provider_keys():
    install_provider_keys()
    yield
    identity_tokens.clear_jwks_cache()


@pytest.mark.asyncio
async def test_verify_google():
    user = await verify_google(make_id_token(google_claims(nonce="n-1")), "test-client-id")
    assert user.unique_id == "google-user-1"
    assert user.email == "jane@gmail.test"
    assert user.name == "Jane Doe"
    assert user.given_name == "Jane"
    assert user.family_name == "Doe"
    assert user.nonce == "n-1"


@pytest.mark.asyncio
async def test_verify_google_accepts_issuer_without_scheme():
    token = make_id_token(google_claims(iss="accounts.google.com"))
    user = await verify_google(token, "test-client-id")
    assert user.unique_id == "google-user-1"


@pytest.mark.asyncio
async def test_optional_name_claims_are_none():
    claims = google_claims()
    for key in ("name", "given_name", "family_name"):
        claims.pop(key)
    user = await verify_google(make_id_token(claims), "test-client-id")
    assert user.name is None
    assert user.given_name is None
    assert user.family_name is None
    assert user.display_name is None


@pytest.mark.asyncio
async def test_display_name_falls_back_to_given_and_family_name():
    claims = google_claims()
    claims.pop("name")
    user = await verify_google(make_id_token(claims), "test-client-id")
    assert user.display_name == "Jane Doe"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"aud": "someone-else"},
        {"iss": "https://evil.test"},
        {"exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
        {"sub": ""},
    ],
)
async def test_verify_google_rejects_bad_claims(overrides):
    with pytest.raises(InvalidIdentityToken):
        await verify_google(make_id_token(google_claims(**overrides)), "test-client-id")


@pytest.mark.asyncio
async def test_verify_rejects_foreign_signature():
    with pytest.raises(InvalidIdentityToken):
        await verify_google(make_id_token(google_claims(), private_pem=FOREIGN_PRIVATE_PEM), "test-client-id")


@pytest.mark.asyncio
async def test_verify_rejects_garbage():
    with pytest.raises(InvalidIdentityToken):
        await verify_google("not-a-jwt", "test-client-id")


@pytest.mark.asyncio
async def test_access_token_hash_is_checked_when_present():
    access_token = "provider-access-token"
    at_hash = calculate_at_hash(access_token, hashlib.sha256)
    token = make_id_token(google_claims(at_hash=at_hash))
    user = await verify_google(token, "test-client-id", access_token=access_token)
    assert user.unique_id == "google-user-1"

    with pytest.raises(InvalidIdentityToken):
        await verify_google(token, "test-client-id", access_token="another-access-token")


@pytest.mark.asyncio
async def test_verify_apple_has_no_names():
    claims = apple_claims(aud="com.example.web", name="Ignored")
    user = await verify_apple(make_id_token(claims), "com.example.web")
    assert user.unique_id == "001234.abcdef"
    assert user.email == "hidden@privaterelay.appleid.test"
    assert user.email_verified is True
    assert user.name is None


@pytest.mark.asyncio
@pytest.mark.parametrize("email_verified", ["false", None, "yes"])
async def test_verify_apple_unverified_email(email_verified):
    claims = apple_claims()
    if email_verified is None:
        claims.pop("email_verified")
    else:
        claims["email_verified"] = email_verified
    user = await verify_apple(make_id_token(claims), "test-client-id")
    assert user.email == "hidden@privaterelay.appleid.test"
    assert user.email_verified is False


@pytest.mark.asyncio
@pytest.mark.parametrize("email_verified,expected", [(True, True), (False, False), ("true", True), (None, False)])
async def test_verify_google_email_verified(email_verified, expected):
    claims = google_claims()
    if email_verified is None:
        claims.pop("email_verified")
    else:
        claims["email_verified"] = email_verified
    user = await verify_google(make_id_token(claims), "test-client-id")
    assert user.email_verified is expected


@pytest.mark.asyncio
async def test_verify_microsoft_ignores_preferred_username():
    user = await verify_microsoft(make_id_token(microsoft_claims()), "test-client-id")
    assert user.unique_id == "ms-subject"
    assert user.email is None
    assert user.email_verified is False


@pytest.mark.asyncio
async def test_verify_microsoft_email_without_domain_verification():
    token = make_id_token(microsoft_claims(email="jane.doe@contoso.test"))
    user = await verify_microsoft(token, "test-client-id")
    assert user.email == "jane.doe@contoso.test"
    assert user.email_verified is False


@pytest.mark.asyncio
async def test_verify_microsoft_email_with_domain_verification():
    token = make_id_token(microsoft_claims(email="jane.doe@contoso.test", xms_edov=True))
    user = await verify_microsoft(token, "test-client-id")
    assert user.email == "jane.doe@contoso.test"
    assert user.email_verified is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"tid": "another-tenant"},
        {"iss": "https://login.microsoftonline.com/another-tenant/v2.0", "tid": TENANT_ID},
        {"tid": None},
    ],
)
async def test_verify_microsoft_rejects_issuer_not_matching_tenant(overrides):
    claims = microsoft_claims(**overrides)
    if claims["tid"] is None:
        claims.pop("tid")
    with pytest.raises(InvalidIdentityToken):
        await verify_microsoft(make_id_token(claims), "test-client-id")


@pytest.mark.asyncio
async def test_microsoft_keys_are_fetched_for_configured_tenant(monkeypatch):
    fake = FakeJwksClient(body=provider_jwks())
    monkeypatch.setattr(identity_tokens, "get_http_client", lambda: fake)
    user = await verify_microsoft(make_id_token(microsoft_claims()), "test-client-id", tenant=TENANT_ID)
    assert user.unique_id == "ms-subject"
    assert fake.urls == [MICROSOFT_JWKS_URL.format(tenant=TENANT_ID)]


@pytest.mark.asyncio
async def test_unknown_kid_triggers_refetch(monkeypatch):
    fake = FakeJwksClient(body=provider_jwks(kid="rotated-key"))
    monkeypatch.setattr(identity_tokens, "get_http_client", lambda: fake)

    token = make_id_token(google_claims(), kid="rotated-key")
    user = await verify_google(token, "test-client-id")
    assert user.unique_id == "google-user-1"
    assert fake.urls == [GOOGLE_JWKS_URL]

    # Cached now
    await verify_google(token, "test-client-id")
    assert fake.urls == [GOOGLE_JWKS_URL]


@pytest.mark.asyncio
async def test_stale_cache_is_refetched(monkeypatch):
    fake = FakeJwksClient(body=provider_jwks())
    monkeypatch.setattr(identity_tokens, "get_http_client", lambda: fake)
    fetched_at, jwks = identity_tokens._jwks_cache[GOOGLE_JWKS_URL]
    identity_tokens._jwks_cache[GOOGLE_JWKS_URL] = (
        time.monotonic() - identity_tokens.JWKS_CACHE_SECONDS - 1,
        jwks,
    )
    await verify_google(make_id_token(google_claims()), "test-client-id")
    assert fake.urls == [GOOGLE_JWKS_URL]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "fake",
    [
        FakeJwksClient(exc=httpx.ConnectError("unreachable")),
        FakeJwksClient(body={"not": "a key set"}),
    ],
)
async def test_key_download_failure(monkeypatch, fake):
    identity_tokens.clear_jwks_cache()
    monkeypatch.setattr(identity_tokens, "get_http_client", lambda: fake)
    with pytest.raises(ProviderRequestFailed):
        await verify_google(make_id_token(google_claims()), "test-client-id")
