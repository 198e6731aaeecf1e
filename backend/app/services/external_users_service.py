"""
External login through Apple, Google and Microsoft.

The callback is handled as one linear sequence: look up the AuthClient, exchange the
authorization code at the provider token endpoint, verify the identity token, resolve
or create the local user and its ExternalUser link, then hand out a one-time
authentication token that the browser exchanges for real access/refresh tokens.
No state is kept between requests; the OAuth ``state`` parameter is a short-lived
JWT signed with our own key.
"""
from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

import httpx
from jose import jwt
from jose.exceptions import JOSEError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import AuthConfig
from app.core.auth import create_random_token, encode_jwt, generate_salt, hash_password, hash_token
from app.core.errors import (
    ClientNotFound,
    CodeNotFound,
    InternalError,
    InvalidClientName,
    InvalidIdentityToken,
    ProviderRequestFailed,
)
from app.models.auth_client import AuthClient, AuthClientType
from app.models.external_user import ExternalUser
from app.models.user import User
from app.services.crypto import decrypt_value
from app.services.http_client import get_http_client
from app.services.identity_tokens import OAuthUser, verify_identity_token
from app.services.roles_service import RolesService
from app.services.users_service import UsersService, normalize_email, normalize_user_name

logger = logging.getLogger(__name__)

STATE_LIFETIME = timedelta(minutes=10)
STATE_TOKEN_TYPE = "oauth_state"
USER_NAME_ATTEMPTS = 5

_SCOPES = {
    AuthClientType.apple: "openid name email",
    AuthClientType.google: "openid profile email",
    AuthClientType.microsoft: "openid profile email",
}


@dataclass(frozen=True)
class CallbackResult:
    location: str
    user: User
    external_user: ExternalUser


class ExternalUsersService:
    def __init__(self, session: AsyncSession, config: AuthConfig):
        self.session = session
        self.config = config

    async def get_auth_client(self, uri: str | None) -> AuthClient:
        if not uri:
            raise InvalidClientName()
        r = await self.session.execute(select(AuthClient).where(AuthClient.uri == uri))
        auth_client = r.scalar_one_or_none()
        if auth_client is None:
            raise ClientNotFound()
        return auth_client

    def get_callback_url(self, auth_client: AuthClient) -> str:
        return f"{self.config.base_address}/identity/callback/{auth_client.uri}"

    def get_redirect_location(self, auth_client: AuthClient) -> str:
        """Provider authorization URL for auth_client, with a signed state and a nonce."""
        state, nonce = self.create_state(auth_client)
        params = {
            "client_id": auth_client.client_id,
            "redirect_uri": self.get_callback_url(auth_client),
            "response_type": "code",
            "scope": _SCOPES[auth_client.type],
            "state": state,
            "nonce": nonce,
        }
        if auth_client.type == AuthClientType.apple:
            # Apple refuses name/email scopes unless the code is delivered by form POST
            params["response_mode"] = "form_post"
        return f"{auth_client.authorization_endpoint}?{urlencode(params)}"

    def create_state(self, auth_client: AuthClient) -> tuple[str, str]:
        nonce = secrets.token_urlsafe(16)
        payload = {
            "typ": STATE_TOKEN_TYPE,
            "uri": auth_client.uri,
            "nonce": nonce,
            "exp": datetime.now(timezone.utc) + STATE_LIFETIME,
        }
        return encode_jwt(self.config, payload), nonce

    def verify_state(self, state: str, uri: str) -> str:
        """Validate a state value from the callback; returns the nonce it carries."""
        try:
            payload = jwt.decode(state, self.config.verification_key, algorithms=[self.config.algorithm])
        except JOSEError as e:
            raise InvalidIdentityToken(f"Invalid OAuth state: {e}") from e
        if payload.get("typ") != STATE_TOKEN_TYPE or payload.get("uri") != uri:
            raise InvalidIdentityToken("OAuth state was issued for another client")
        return payload.get("nonce") or ""

    async def exchange_code(self, auth_client: AuthClient, code: str) -> dict[str, Any]:
        """POST the authorization code to the provider token endpoint (form-encoded, no retries)."""
        data = {
            "client_id": auth_client.client_id,
            "client_secret": decrypt_value(auth_client.client_secret, self.config.encryption_key),
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.get_callback_url(auth_client),
        }
        try:
            r = await get_http_client().post(
                auth_client.token_endpoint,
                data=data,
                timeout=self.config.provider_timeout_seconds,
            )
            r.raise_for_status()
            body = r.json()
        except httpx.HTTPStatusError as e:
            raise ProviderRequestFailed(
                f"Token endpoint of {auth_client.uri} answered {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderRequestFailed(f"Token endpoint of {auth_client.uri} failed: {e!r}") from e
        except ValueError as e:
            raise ProviderRequestFailed(f"Token endpoint of {auth_client.uri} returned invalid JSON") from e
        if not isinstance(body, dict):
            raise ProviderRequestFailed(f"Token endpoint of {auth_client.uri} returned unexpected payload")
        return body

    async def get_oauth_user(self, auth_client: AuthClient, token_response: dict[str, Any]) -> OAuthUser:
        id_token = token_response.get("id_token")
        if not id_token:
            raise InvalidIdentityToken(f"No id_token in token response from {auth_client.uri}")
        return await verify_identity_token(
            auth_client,
            id_token,
            auth_client.client_id,
            access_token=token_response.get("access_token"),
        )

    async def get_registered_external_user(
        self, client_type: AuthClientType, oauth_user: OAuthUser
    ) -> tuple[User | None, ExternalUser | None]:
        """Linked user for the external identity; otherwise a local user with the same verified email, unlinked."""
        r = await self.session.execute(
            select(ExternalUser).where(
                ExternalUser.type == client_type,
                ExternalUser.external_id == oauth_user.unique_id,
            )
        )
        external_user = r.scalar_one_or_none()
        if external_user is not None:
            user = await self.session.get(User, external_user.user_id)
            return user, external_user
        if not oauth_user.email or not oauth_user.email_verified:
            return None, None
        r = await self.session.execute(
            select(User).where(User.email_normalized == normalize_email(oauth_user.email))
        )
        return r.scalar_one_or_none(), None

    async def resolve_user(
        self, client_type: AuthClientType, oauth_user: OAuthUser
    ) -> tuple[User, ExternalUser]:
        """Find or create the user and its link.

        Creation runs in a SAVEPOINT. A unique-constraint violation means a
        concurrent callback registered the same identity first: roll back the
        savepoint and use what it created.
        """
        for _ in range(2):
            user, external_user = await self.get_registered_external_user(client_type, oauth_user)
            if user is not None and external_user is not None:
                return user, external_user
            try:
                async with self.session.begin_nested():
                    if user is None:
                        user = await self.create_user(oauth_user)
                    external_user = ExternalUser(
                        type=client_type,
                        external_id=oauth_user.unique_id,
                        user_id=user.id,
                    )
                    self.session.add(external_user)
                    await self.session.flush()
                logger.info("Linked %s identity to user %s", client_type.value, user.id)
                return user, external_user
            except IntegrityError:
                logger.info("Concurrent registration of %s identity detected; re-fetching", client_type.value)
        raise InternalError("Cannot register external user")

    async def get_available_user_name(self, email: str) -> str:
        """The email itself, or the email with a random suffix when its normalized form is taken."""
        user_name = email
        for _ in range(USER_NAME_ATTEMPTS):
            r = await self.session.execute(
                select(User.id).where(User.user_name_normalized == normalize_user_name(user_name))
            )
            if r.first() is None:
                return user_name
            user_name = f"{email}-{secrets.token_hex(3)}"
        raise InternalError("Cannot derive a free user name")

    async def create_user(self, oauth_user: OAuthUser) -> User:
        if not oauth_user.email:
            raise InvalidIdentityToken("Identity token has no email; cannot create an account")
        if not oauth_user.email_verified:
            raise InvalidIdentityToken("Identity token email is not verified; cannot create an account")
        email = oauth_user.email.strip()
        user_name = await self.get_available_user_name(email)
        salt = generate_salt()
        user = User(
            user_name=user_name,
            user_name_normalized=normalize_user_name(user_name),
            email=email,
            email_normalized=normalize_email(email),
            name=oauth_user.display_name or email,
            # Placeholder password; external accounts never log in with it
            password_hash=hash_password(str(uuid.uuid4()), salt),
            salt=salt,
            is_blocked=False,
            email_was_confirmed=True,
            gravatar_hash=UsersService.create_gravatar_hash(email),
        )
        user.roles = await RolesService(self.session).get_default()
        self.session.add(user)
        await self.session.flush()
        logger.info("Created user %s from external identity", user.id)
        return user

    async def issue_authentication_token(self, external_user: ExternalUser) -> str:
        """Store a fresh one-time token on the link; a previous unused token is replaced."""
        token = create_random_token()
        external_user.authentication_token_hash = hash_token(token)
        external_user.token_created_at = datetime.now(timezone.utc)
        await self.session.flush()
        return token

    @staticmethod
    def build_callback_location(auth_client: AuthClient, authentication_token: str) -> str:
        separator = "&" if "?" in auth_client.callback_url else "?"
        query = urlencode({"authenticationToken": authentication_token})
        return f"{auth_client.callback_url}{separator}{query}"

    async def handle_callback(self, auth_client: AuthClient, code: str | None, state: str | None) -> CallbackResult:
        if not code:
            raise CodeNotFound()
        if not state:
            raise InvalidIdentityToken("Callback without OAuth state")
        expected_nonce = self.verify_state(state, auth_client.uri)

        token_response = await self.exchange_code(auth_client, code)
        oauth_user = await self.get_oauth_user(auth_client, token_response)
        if not expected_nonce or oauth_user.nonce != expected_nonce:
            raise InvalidIdentityToken("Identity token nonce does not match the OAuth state")

        user, external_user = await self.resolve_user(auth_client.type, oauth_user)
        authentication_token = await self.issue_authentication_token(external_user)
        return CallbackResult(
            location=self.build_callback_location(auth_client, authentication_token),
            user=user,
            external_user=external_user,
        )
