"""Access/refresh token issuance, validation, rotation and revocation."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import AuthConfig
from app.core.auth import create_access_token, create_random_token, hash_token
from app.core.errors import InvalidToken, UserNotFound
from app.models.refresh_token import RefreshToken
from app.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessTokens:
    access_token: str
    refresh_token: str
    expires_in: int  # seconds until access token expires


class TokensService:
    def __init__(self, session: AsyncSession, config: AuthConfig):
        self.session = session
        self.config = config

    async def create_access_tokens(self, user: User) -> AccessTokens:
        """Sign an access token with role claims and persist a new refresh token for user."""
        access_token = await self._sign_access_token(user)
        refresh_plain = create_random_token()
        self.session.add(
            RefreshToken(
                user_id=user.id,
                token_hash=hash_token(refresh_plain),
                expires_at=datetime.now(timezone.utc) + self.config.refresh_token_lifetime,
                is_revoked=False,
            )
        )
        await self.session.flush()
        return AccessTokens(
            access_token=access_token,
            refresh_token=refresh_plain,
            expires_in=int(self.config.access_token_lifetime.total_seconds()),
        )

    async def validate_refresh_token(self, token: str) -> RefreshToken:
        """Return the active refresh token row; InvalidToken if absent, revoked or expired."""
        if not token:
            raise InvalidToken()
        r = await self.session.execute(
            select(RefreshToken).where(
                RefreshToken.token_hash == hash_token(token),
                RefreshToken.is_revoked.is_(False),
                RefreshToken.expires_at > datetime.now(timezone.utc),
            )
        )
        row = r.scalar_one_or_none()
        if row is None:
            raise InvalidToken("Refresh token is invalid or expired")
        return row

    async def get_user_by_refresh_token(self, token: str) -> User:
        """Owner of the refresh token. Blocked users are treated as missing."""
        r = await self.session.execute(
            select(User)
            .join(RefreshToken, RefreshToken.user_id == User.id)
            .where(RefreshToken.token_hash == hash_token(token))
            .options(selectinload(User.roles))
        )
        user = r.scalar_one_or_none()
        if user is None or user.is_blocked:
            raise UserNotFound()
        return user

    async def update_access_tokens(self, user: User, old_refresh_token: RefreshToken) -> AccessTokens:
        """Rotate: revoke old_refresh_token and issue a new pair in the same transaction.

        The revoke is a conditional update on ``is_revoked = false``; when a
        concurrent rotation already consumed the token no row matches and the
        call fails with InvalidToken, so a token can be exchanged only once.
        """
        result = await self.session.execute(
            update(RefreshToken)
            .where(
                RefreshToken.id == old_refresh_token.id,
                RefreshToken.user_id == user.id,
                RefreshToken.is_revoked.is_(False),
            )
            .values(is_revoked=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info("Refresh token %s for user %s was already rotated", old_refresh_token.id, user.id)
            raise InvalidToken("Refresh token is invalid or expired")
        return await self.create_access_tokens(user)

    async def revoke_refresh_tokens(self, user: User) -> int:
        """Revoke every active refresh token of user. Returns the number of revoked tokens."""
        result = await self.session.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user.id, RefreshToken.is_revoked.is_(False))
            .values(is_revoked=True)
            .execution_options(synchronize_session=False)
        )
        logger.info("Revoked %s refresh tokens for user %s", result.rowcount, user.id)
        return result.rowcount

    async def _sign_access_token(self, user: User) -> str:
        roles = await self._load_roles(user)
        claims = {
            "user_name": user.user_name,
            "email": user.email,
            "name": user.name,
            "gravatar_hash": user.gravatar_hash,
            "roles": [role.code for role in roles],
            "is_super_user": any(role.has_super_privileges for role in roles),
        }
        token, _ = create_access_token(self.config, user.id, claims)
        return token

    async def _load_roles(self, user: User):
        # Lazy loading is not available under AsyncSession
        await self.session.refresh(user, attribute_names=["roles"])
        return user.roles
