"""Account: login, refresh, change password, revoke."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Path, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import (
    UserPayload,
    client_ip,
    get_current_payload,
    get_tokens_service,
    get_users_service,
    require_super_user,
)
from app.core.errors import AppError, UserNotFound
from app.core.metrics import LOGINS, TOKEN_REFRESHES
from app.core.rate_limit import LOGIN_LIMIT, limiter
from app.db.session import get_db
from app.schemas.account import AccessTokenResponse, ChangePasswordRequest, LoginRequest, RefreshTokenRequest
from app.services.audit import AuditAction, log_action
from app.services.tokens_service import AccessTokens, TokensService
from app.services.users_service import UsersService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/account", tags=["account"])


def _token_response(tokens: AccessTokens) -> AccessTokenResponse:
    return AccessTokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.expires_in,
    )


@router.post(
    "/login",
    response_model=AccessTokenResponse,
    summary="Login with user name or email and password",
    responses={
        401: {"description": "Invalid login credentials"},
        403: {"description": "User account is blocked"},
    },
)
@limiter.limit(LOGIN_LIMIT)
async def login(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
    users: Annotated[UsersService, Depends(get_users_service)],
    tokens: Annotated[TokensService, Depends(get_tokens_service)],
    body: LoginRequest,
) -> AccessTokenResponse:
    try:
        user = await users.login(body.user_name_or_email, body.password)
    except AppError:
        LOGINS.labels(method="password", outcome="failure").inc()
        raise
    access_tokens = await tokens.create_access_tokens(user)
    LOGINS.labels(method="password", outcome="success").inc()
    await log_action(session, user.id, AuditAction.account_login, "user", user.id, ip_address=client_ip(request))
    return _token_response(access_tokens)


@router.post(
    "/refresh",
    response_model=AccessTokenResponse,
    summary="Exchange refresh token for new access and refresh tokens",
    responses={
        401: {"description": "Refresh token invalid, revoked or expired"},
        404: {"description": "User not found or blocked"},
    },
)
async def refresh(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
    tokens: Annotated[TokensService, Depends(get_tokens_service)],
    body: RefreshTokenRequest,
) -> AccessTokenResponse:
    """Exchange refresh_token for new access_token and refresh_token (rotation)."""
    token = body.refresh_token.strip()
    try:
        refresh_token = await tokens.validate_refresh_token(token)
        user = await tokens.get_user_by_refresh_token(token)
        access_tokens = await tokens.update_access_tokens(user, refresh_token)
    except AppError:
        TOKEN_REFRESHES.labels(outcome="failure").inc()
        raise
    TOKEN_REFRESHES.labels(outcome="success").inc()
    await log_action(session, user.id, AuditAction.account_refresh, "user", user.id, ip_address=client_ip(request))
    return _token_response(access_tokens)


@router.post(
    "/change-password",
    summary="Change password of the current user",
    responses={
        401: {"description": "Not authenticated or current password is wrong"},
        422: {"description": "New password does not meet requirements"},
    },
)
async def change_password(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
    users: Annotated[UsersService, Depends(get_users_service)],
    payload: Annotated[UserPayload, Depends(get_current_payload)],
    body: ChangePasswordRequest,
) -> dict:
    """Set a new password; every refresh token of the user is revoked."""
    await users.change_password(payload.id, body.current_password, body.new_password)
    await log_action(
        session, payload.id, AuditAction.account_change_password, "user", payload.id, ip_address=client_ip(request)
    )
    return {"status": "ok"}


@router.post(
    "/revoke/{username}",
    summary="Revoke all refresh tokens of a user (super user only)",
    responses={
        401: {"description": "Not authenticated"},
        403: {"description": "Current user is not a super user"},
        404: {"description": "User not found"},
    },
)
async def revoke(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
    users: Annotated[UsersService, Depends(get_users_service)],
    tokens: Annotated[TokensService, Depends(get_tokens_service)],
    payload: Annotated[UserPayload, Depends(require_super_user)],
    username: Annotated[str, Path(min_length=1, max_length=255)],
) -> dict:
    user = await users.get_by_user_name(username)
    if user is None:
        raise UserNotFound()
    revoked = await tokens.revoke_refresh_tokens(user)
    await log_action(
        session,
        payload.id,
        AuditAction.account_revoke,
        "user",
        user.id,
        details={"revoked_tokens": revoked},
        ip_address=client_ip(request),
    )
    return {"status": "ok"}
