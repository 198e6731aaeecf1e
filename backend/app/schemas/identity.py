"""Request bodies for /identity endpoints."""

from pydantic import Field

from app.schemas.base import CamelModel


class ExternalLoginRequest(CamelModel):
    authentication_token: str = Field(min_length=1, max_length=512)
