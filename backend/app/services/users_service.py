"""Local credential login, login by one-time authentication token, password change."""

import hashlib
import logging
from datetime import datetime, timezone

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import AuthConfig
from app.core.auth import generate_salt, hash_password, hash_token, verify_password
from app.core.errors import AccountBlocked, InvalidCredentials, InvalidToken, UserNotFound
from app.models.external_user import ExternalUser
from app.models.user import User
from app.services.tokens_service import TokensService

logger = logging.getLogger(__name__)

# Checked when no user matches, so an unknown user costs the same bcrypt round as a wrong password
_DUMMY_PASSWORD_HASH = hash_password("not-a-real-password", generate_salt())


def normalize_user_name(user_name: str) -> str:
    """Case-fold a user name and strip characters not allowed in it."""
    return user_name.strip().replace("@", "").upper()


def normalize_email(email: str) -> str:
    return email.strip().upper()


class UsersService:
    def __init__(self, session: AsyncSession, config: AuthConfig):
        self.session = session
        self.config = config

    async def login(self, user_name_or_email: str, password: str) -> User:
        """Verify credentials. Unknown user and wrong password raise the same InvalidCredentials."""
        user_name_normalized = normalize_user_name(user_name_or_email)
        email_normalized = normalize_email(user_name_or_email)
        r = await self.session.execute(
            select(User).where(
                or_(
                    User.user_name_normalized == user_name_normalized,
                    User.email_normalized == email_normalized,
                )
            )
        )
        # A user name may equal another user's email with "@" stripped; prefer the email match
        candidates = list(r.scalars().all())
        user = next((u for u in candidates if u.email_normalized == email_normalized), None)
        if user is None and candidates:
            user = candidates[0]
        if user is None:
            verify_password(password, _DUMMY_PASSWORD_HASH)
            logger.info("Failed login attempt")
            raise InvalidCredentials()
        if not verify_password(password, user.password_hash):
            logger.info("Failed login attempt")
            raise InvalidCredentials()
        if user.is_blocked:
            logger.info("Login attempt for blocked user %s", user.id)
            raise AccountBlocked()
        return user

    async def login_by_authentication_token(self, authentication_token: str) -> User:
        """Consume a one-time external-login token and return its owner.

        Consumption is a conditional update that clears the token, so of two
        concurrent calls with the same token only one succeeds.
        """
        if not authentication_token:
            raise InvalidToken()
        token_hash = hash_token(authentication_token)
        not_before = datetime.now(timezone.utc) - self.config.authentication_token_lifetime
        r = await self.session.execute(
            select(ExternalUser).where(
                ExternalUser.authentication_token_hash == token_hash,
                ExternalUser.token_created_at > not_before,
            )
        )
        external_user = r.scalar_one_or_none()
        if external_user is None:
            raise InvalidToken("Authentication token is invalid or expired")

        result = await self.session.execute(
            update(ExternalUser)
            .where(
                ExternalUser.id == external_user.id,
                ExternalUser.authentication_token_hash == token_hash,
            )
            .values(authentication_token_hash=None, token_created_at=None)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidToken("Authentication token is invalid or expired")

        user = await self.session.get(User, external_user.user_id)
        if user is None:
            raise InvalidToken("Authentication token is invalid or expired")
        if user.is_blocked:
            raise AccountBlocked()
        return user

    async def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        """Replace the password (new salt, new hash) and revoke all refresh tokens of the user."""
        user = await self.session.get(User, user_id)
        if user is None:
            raise UserNotFound()
        if not verify_password(current_password, user.password_hash):
            raise InvalidCredentials()
        user.salt = generate_salt()
        user.password_hash = hash_password(new_password, user.salt)
        await self.session.flush()
        await TokensService(self.session, self.config).revoke_refresh_tokens(user)
        logger.info("Password changed for user %s", user.id)

    async def get_by_user_name(self, user_name: str) -> User | None:
        r = await self.session.execute(
            select(User).where(User.user_name_normalized == normalize_user_name(user_name))
        )
        return r.scalar_one_or_none()

    @staticmethod
    def create_gravatar_hash(email: str) -> str:
        return hashlib.md5(email.strip().lower().encode("utf-8"), usedforsecurity=False).hexdigest()
