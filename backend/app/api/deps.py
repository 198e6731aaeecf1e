"""FastAPI dependencies: auth config, services, bearer payload, super-user guard."""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import AuthConfig
from app.core.auth import decode_token
from app.core.errors import Forbidden
from app.db.session import get_db
from app.services.external_users_service import ExternalUsersService
from app.services.tokens_service import TokensService
from app.services.users_service import UsersService


@dataclass(frozen=True)
class UserPayload:
    """Claims of a verified access token."""

    id: int
    user_name: str
    email: str
    name: str | None
    roles: list[str]
    is_super_user: bool


def get_auth_config(request: Request) -> AuthConfig:
    return request.app.state.auth_config


def get_tokens_service(
    session: Annotated[AsyncSession, Depends(get_db)],
    config: Annotated[AuthConfig, Depends(get_auth_config)],
) -> TokensService:
    return TokensService(session, config)


def get_users_service(
    session: Annotated[AsyncSession, Depends(get_db)],
    config: Annotated[AuthConfig, Depends(get_auth_config)],
) -> UsersService:
    return UsersService(session, config)


def get_external_users_service(
    session: Annotated[AsyncSession, Depends(get_db)],
    config: Annotated[AuthConfig, Depends(get_auth_config)],
) -> ExternalUsersService:
    return ExternalUsersService(session, config)


async def get_current_payload(
    request: Request,
    config: Annotated[AuthConfig, Depends(get_auth_config)],
) -> UserPayload:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    token = auth_header[7:].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(config, token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    user_id_str = payload.get("sub")
    if not user_id_str:
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        user_id = int(user_id_str)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token")
    return UserPayload(
        id=user_id,
        user_name=payload.get("user_name", ""),
        email=payload.get("email", ""),
        name=payload.get("name"),
        roles=list(payload.get("roles") or []),
        is_super_user=bool(payload.get("is_super_user")),
    )


async def require_super_user(
    payload: Annotated[UserPayload, Depends(get_current_payload)],
) -> UserPayload:
    """Require a super-user access token. Raises 403 otherwise."""
    if not payload.is_super_user:
        raise Forbidden()
    return payload


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None
