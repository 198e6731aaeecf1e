"""Periodic cleanup: drop dead refresh tokens and clear stale one-time authentication tokens."""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.external_user import ExternalUser
from app.models.refresh_token import RefreshToken

logger = logging.getLogger(__name__)


async def purge_expired_tokens(
    session: AsyncSession,
    retention_days: int,
    authentication_token_lifetime: timedelta,
    *,
    now: datetime | None = None,
) -> tuple[int, int]:
    """
    Delete refresh tokens that expired, or were created and revoked, more than retention_days ago.
    Clear one-time authentication tokens older than their lifetime.
    Returns (deleted refresh tokens, cleared authentication tokens).
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=retention_days)
    r = await session.execute(
        delete(RefreshToken)
        .where(
            or_(
                RefreshToken.expires_at < cutoff,
                (RefreshToken.is_revoked.is_(True)) & (RefreshToken.created_at < cutoff),
            )
        )
        .execution_options(synchronize_session=False)
    )
    deleted = r.rowcount
    r = await session.execute(
        update(ExternalUser)
        .where(
            ExternalUser.authentication_token_hash.is_not(None),
            ExternalUser.token_created_at < now - authentication_token_lifetime,
        )
        .values(authentication_token_hash=None, token_created_at=None)
        .execution_options(synchronize_session=False)
    )
    cleared = r.rowcount
    logger.info("Token cleanup: deleted %s refresh tokens, cleared %s authentication tokens", deleted, cleared)
    return deleted, cleared
