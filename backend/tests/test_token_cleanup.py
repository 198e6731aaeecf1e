"""Tests for the scheduled cleanup of refresh tokens and one-time authentication tokens."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from app.db.session import async_session_maker
from app.models.auth_client import AuthClientType
from app.models.external_user import ExternalUser
from app.models.refresh_token import RefreshToken
from app.services.token_cleanup import purge_expired_tokens

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
LIFETIME = timedelta(minutes=5)


def _refresh_token(user_id: int, name: str, expires_at: datetime, created_at: datetime, revoked: bool = False):
    return RefreshToken(
        user_id=user_id,
        token_hash=name.ljust(64, "0"),
        expires_at=expires_at,
        created_at=created_at,
        is_revoked=revoked,
    )


@pytest.mark.asyncio
async def test_purge_expired_tokens(client, test_user):
    async with async_session_maker() as session:
        session.add_all(
            [
                _refresh_token(test_user.id, "live", NOW + timedelta(days=20), NOW - timedelta(days=10)),
                _refresh_token(test_user.id, "recentlyexpired", NOW - timedelta(days=1), NOW - timedelta(days=31)),
                _refresh_token(test_user.id, "longexpired", NOW - timedelta(days=8), NOW - timedelta(days=38)),
                _refresh_token(
                    test_user.id, "oldrevoked", NOW + timedelta(days=10), NOW - timedelta(days=20), revoked=True
                ),
                _refresh_token(
                    test_user.id, "newrevoked", NOW + timedelta(days=29), NOW - timedelta(days=1), revoked=True
                ),
            ]
        )
        session.add_all(
            [
                ExternalUser(
                    type=AuthClientType.google,
                    external_id="fresh",
                    user_id=test_user.id,
                    authentication_token_hash="f" * 64,
                    token_created_at=NOW - timedelta(minutes=1),
                ),
                ExternalUser(
                    type=AuthClientType.apple,
                    external_id="stale",
                    user_id=test_user.id,
                    authentication_token_hash="s" * 64,
                    token_created_at=NOW - timedelta(hours=1),
                ),
            ]
        )
        await session.commit()

    async with async_session_maker() as session:
        deleted, cleared = await purge_expired_tokens(session, 7, LIFETIME, now=NOW)
        await session.commit()
    assert (deleted, cleared) == (2, 1)

    async with async_session_maker() as session:
        r = await session.execute(select(RefreshToken.token_hash))
        remaining = sorted(h.rstrip("0") for h in r.scalars().all())
        assert remaining == ["live", "newrevoked", "recentlyexpired"]

        r = await session.execute(select(ExternalUser).order_by(ExternalUser.external_id))
        fresh, stale = r.scalars().all()
        assert fresh.authentication_token_hash == "f" * 64
        assert stale.authentication_token_hash is None
        assert stale.token_created_at is None


@pytest.mark.asyncio
async def test_purge_on_empty_database(client):
    async with async_session_maker() as session:
        assert await purge_expired_tokens(session, 7, LIFETIME) == (0, 0)
