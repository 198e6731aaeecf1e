"""Password hashing, JWT creation/verification and random token helpers."""

import hashlib
import secrets
from datetime import datetime, timezone
from typing import Any

import bcrypt
from jose import jwt
from jose.exceptions import JOSEError

from app.config import AuthConfig
from app.core.errors import InternalError

# 48 random bytes = 384 bits; url-safe base64 gives 64 characters
TOKEN_BYTES = 48


def generate_salt() -> str:
    return bcrypt.gensalt().decode("utf-8")


def hash_password(password: str, salt: str) -> str:
    """Hash password with bcrypt and the given salt. Bytes truncated to 72 (bcrypt limit)."""
    pwd_bytes = password.encode("utf-8")[:72]
    hashed = bcrypt.hashpw(pwd_bytes, salt.encode("utf-8"))
    return hashed.decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify password with bcrypt. Plain password truncated to 72 bytes."""
    plain_bytes = plain_password.encode("utf-8")[:72]
    try:
        return bcrypt.checkpw(plain_bytes, password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def create_random_token() -> str:
    """Opaque high-entropy token for refresh and one-time authentication tokens."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_token(token: str) -> str:
    """SHA256 hash of an opaque token for storage."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def encode_jwt(config: AuthConfig, payload: dict[str, Any]) -> str:
    if not config.signing_key:
        raise InternalError("Signing key is not configured")
    try:
        result = jwt.encode(payload, config.signing_key, algorithm=config.algorithm)
    except JOSEError as e:
        raise InternalError("Token signing failed") from e
    return result if isinstance(result, str) else result.decode("utf-8")


def create_access_token(
    config: AuthConfig,
    user_id: int,
    claims: dict[str, Any] | None = None,
) -> tuple[str, datetime]:
    """Sign an access token for user_id. Returns (token, expiry)."""
    now = datetime.now(timezone.utc)
    expire = now + config.access_token_lifetime
    payload = {"sub": str(user_id), "iat": now, "exp": expire}
    if claims:
        payload.update(claims)
    return encode_jwt(config, payload), expire


def decode_token(config: AuthConfig, token: str) -> dict[str, Any]:
    algorithms = [config.algorithm]
    return jwt.decode(token, config.verification_key, algorithms=algorithms)
