from app.models.user import User
from app.models.role import Role, user_roles
from app.models.refresh_token import RefreshToken
from app.models.auth_client import AuthClient, AuthClientType
from app.models.external_user import ExternalUser
from app.models.audit_log import AuditLog

__all__ = [
    "User",
    "Role",
    "user_roles",
    "RefreshToken",
    "AuthClient",
    "AuthClientType",
    "ExternalUser",
    "AuditLog",
]
