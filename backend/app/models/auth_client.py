"""External identity provider registrations (Apple, Google, Microsoft)."""

from __future__ import annotations

import enum

from sqlalchemy import Enum, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class AuthClientType(str, enum.Enum):
    apple = "apple"
    google = "google"
    microsoft = "microsoft"


class AuthClient(Base):
    __tablename__ = "auth_clients"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    type: Mapped[AuthClientType] = mapped_column(
        Enum(AuthClientType, name="auth_client_type", native_enum=False, length=20), nullable=False
    )
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    uri: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    tenant: Mapped[str | None] = mapped_column(String(100), nullable=True)  # Microsoft directory; None = "common"
    client_id: Mapped[str] = mapped_column(String(255), nullable=False)
    client_secret: Mapped[str] = mapped_column(Text, nullable=False)  # Fernet-encrypted when ENCRYPTION_KEY set
    callback_url: Mapped[str] = mapped_column(String(500), nullable=False)
    authorization_endpoint: Mapped[str] = mapped_column(String(500), nullable=False)
    token_endpoint: Mapped[str] = mapped_column(String(500), nullable=False)
    svg_icon: Mapped[str | None] = mapped_column(Text, nullable=True)
