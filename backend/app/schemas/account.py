"""Request/response bodies for /account endpoints."""

import re

from pydantic import Field, field_validator

from app.schemas.base import CamelModel


class LoginRequest(CamelModel):
    # to_camel would give "userNameOrEmail"; the public field name is usernameOrEmail
    user_name_or_email: str = Field(min_length=1, max_length=255, alias="usernameOrEmail")
    password: str = Field(min_length=1, max_length=256)


class RefreshTokenRequest(CamelModel):
    refresh_token: str = Field(min_length=1, max_length=512)


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(min_length=1, max_length=256)
    new_password: str = Field(min_length=8, max_length=32)

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        if not re.search(r"[A-Za-z]", v) or not re.search(r"\d", v):
            raise ValueError("Password must contain at least one letter and one digit")
        return v


class AccessTokenResponse(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds until access token expires
