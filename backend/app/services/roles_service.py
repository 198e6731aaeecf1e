"""Role lookups needed for token issuance and user creation."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.role import Role

logger = logging.getLogger(__name__)

ADMINISTRATOR_ROLE_CODE = "administrator"
MEMBER_ROLE_CODE = "member"

_BUILTIN_ROLES = (
    {
        "title": "Administrator",
        "code": ADMINISTRATOR_ROLE_CODE,
        "description": "Users with full access to the system",
        "has_super_privileges": True,
        "is_default": False,
    },
    {
        "title": "Member",
        "code": MEMBER_ROLE_CODE,
        "description": "Default role assigned to every new user",
        "has_super_privileges": False,
        "is_default": True,
    },
)


class RolesService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_default(self) -> list[Role]:
        r = await self.session.execute(select(Role).where(Role.is_default.is_(True)))
        return list(r.scalars().all())

    async def get_by_code(self, code: str) -> Role | None:
        r = await self.session.execute(select(Role).where(Role.code == code))
        return r.scalar_one_or_none()

    async def ensure_default_roles(self) -> None:
        """Create the built-in administrator and member roles when missing."""
        for definition in _BUILTIN_ROLES:
            if await self.get_by_code(definition["code"]) is None:
                self.session.add(Role(**definition))
                logger.info("Created built-in role %s", definition["code"])
        await self.session.flush()
