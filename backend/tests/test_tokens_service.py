"""Service-level tests for refresh token rotation."""

import pytest
from sqlalchemy import func, select

from app.core.errors import InvalidToken
from app.db.session import async_session_maker
from app.models.refresh_token import RefreshToken
from app.models.user import User
from app.services.tokens_service import TokensService


@pytest.mark.asyncio
async def test_refresh_token_is_rotated_only_once(client, test_user, auth_config):
    """Two rotations validated against the same row: the second finds it revoked and issues nothing."""
    async with async_session_maker() as session:
        tokens = TokensService(session, auth_config)
        user = await session.get(User, test_user.id)
        issued = await tokens.create_access_tokens(user)
        await session.commit()

        # Both callers passed validation before either rotated
        first_row = await tokens.validate_refresh_token(issued.refresh_token)
        second_row = await tokens.validate_refresh_token(issued.refresh_token)
        assert first_row.id == second_row.id

        rotated = await tokens.update_access_tokens(user, first_row)
        assert rotated.refresh_token != issued.refresh_token
        with pytest.raises(InvalidToken):
            await tokens.update_access_tokens(user, second_row)
        await session.commit()

    async with async_session_maker() as session:
        r = await session.execute(
            select(RefreshToken.is_revoked, func.count())
            .where(RefreshToken.user_id == test_user.id)
            .group_by(RefreshToken.is_revoked)
        )
        counts = dict(r.all())
    assert counts == {True: 1, False: 1}


@pytest.mark.asyncio
async def test_rotation_of_revoked_token_fails(client, test_user, auth_config):
    async with async_session_maker() as session:
        tokens = TokensService(session, auth_config)
        user = await session.get(User, test_user.id)
        issued = await tokens.create_access_tokens(user)
        row = await tokens.validate_refresh_token(issued.refresh_token)
        assert await tokens.revoke_refresh_tokens(user) == 1

        with pytest.raises(InvalidToken):
            await tokens.update_access_tokens(user, row)
        with pytest.raises(InvalidToken):
            await tokens.validate_refresh_token(issued.refresh_token)
