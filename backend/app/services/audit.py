import enum

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AuditLog


class AuditAction(str, enum.Enum):
    account_login = "account_login"
    account_refresh = "account_refresh"
    account_change_password = "account_change_password"
    account_revoke = "account_revoke"
    identity_callback = "identity_callback"
    identity_login = "identity_login"


async def log_action(
    session: AsyncSession,
    user_id: int | None,
    action: AuditAction,
    resource: str,
    resource_id: str | None = None,
    details: dict | None = None,
    ip_address: str | None = None,
) -> None:
    session.add(
        AuditLog(
            user_id=user_id,
            action=action.value,
            resource=resource,
            resource_id=str(resource_id) if resource_id is not None else None,
            details=details,
            ip_address=ip_address,
        )
    )
    await session.flush()
