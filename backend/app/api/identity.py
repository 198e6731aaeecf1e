"""Identity: external login through Apple, Google and Microsoft."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import client_ip, get_external_users_service, get_tokens_service, get_users_service
from app.core.errors import AppError
from app.core.metrics import IDENTITY_CALLBACKS, LOGINS
from app.core.rate_limit import LOGIN_LIMIT, limiter
from app.db.session import get_db
from app.schemas.account import AccessTokenResponse
from app.schemas.identity import ExternalLoginRequest
from app.services.audit import AuditAction, log_action
from app.services.external_users_service import ExternalUsersService
from app.services.tokens_service import TokensService
from app.services.users_service import UsersService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/identity", tags=["identity"])

UNKNOWN_CLIENT_LABEL = "unknown"


@router.get(
    "/authenticate/{client_uri}",
    summary="Redirect to external authentication provider",
    status_code=302,
    responses={404: {"description": "Authentication client not found"}},
)
async def authenticate(
    client_uri: str,
    external_users: Annotated[ExternalUsersService, Depends(get_external_users_service)],
) -> RedirectResponse:
    auth_client = await external_users.get_auth_client(client_uri)
    return RedirectResponse(url=external_users.get_redirect_location(auth_client), status_code=302)


@router.api_route(
    "/callback/{client_uri}",
    methods=["GET", "POST"],
    summary="Callback from external authentication provider",
    status_code=302,
    responses={
        400: {"description": "Client name or authorization code missing"},
        401: {"description": "External authentication failed"},
        404: {"description": "Authentication client not found"},
    },
)
async def callback(
    request: Request,
    client_uri: str,
    session: Annotated[AsyncSession, Depends(get_db)],
    external_users: Annotated[ExternalUsersService, Depends(get_external_users_service)],
) -> RedirectResponse:
    """Exchange the code, verify the identity token, then redirect to the client with a one-time token.

    Google and Microsoft deliver ``code``/``state`` in the query string; Apple posts them as a form.
    """
    params = dict(request.query_params)
    if request.method == "POST":
        form = await request.form()
        params.update({k: v for k, v in form.items() if isinstance(v, str)})
    if params.get("error"):
        logger.warning("Provider %s returned error %s", client_uri, params.get("error"))

    # Label only with registered client uris; the path segment is caller-controlled
    client_label = UNKNOWN_CLIENT_LABEL
    try:
        auth_client = await external_users.get_auth_client(client_uri)
        client_label = auth_client.uri
        result = await external_users.handle_callback(auth_client, params.get("code"), params.get("state"))
    except AppError:
        IDENTITY_CALLBACKS.labels(client=client_label, outcome="failure").inc()
        raise
    IDENTITY_CALLBACKS.labels(client=client_label, outcome="success").inc()
    await log_action(
        session,
        result.user.id,
        AuditAction.identity_callback,
        "external_user",
        result.external_user.id,
        details={"client": client_label},
        ip_address=client_ip(request),
    )
    return RedirectResponse(url=result.location, status_code=302)


@router.post(
    "/login",
    response_model=AccessTokenResponse,
    summary="Sign in with the one-time authentication token from the callback redirect",
    responses={
        401: {"description": "Authentication token invalid, expired or already used"},
        403: {"description": "User account is blocked"},
    },
)
@limiter.limit(LOGIN_LIMIT)
async def login(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
    users: Annotated[UsersService, Depends(get_users_service)],
    tokens: Annotated[TokensService, Depends(get_tokens_service)],
    body: ExternalLoginRequest,
) -> AccessTokenResponse:
    try:
        user = await users.login_by_authentication_token(body.authentication_token)
    except AppError:
        LOGINS.labels(method="external", outcome="failure").inc()
        raise
    access_tokens = await tokens.create_access_tokens(user)
    LOGINS.labels(method="external", outcome="success").inc()
    await log_action(session, user.id, AuditAction.identity_login, "user", user.id, ip_address=client_ip(request))
    return AccessTokenResponse(
        access_token=access_tokens.access_token,
        refresh_token=access_tokens.refresh_token,
        expires_in=access_tokens.expires_in,
    )
