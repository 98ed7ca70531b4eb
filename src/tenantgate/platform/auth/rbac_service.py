"""
RBAC Service Layer - role catalog lookups and seeding helpers
"""

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.platform.auth.models import Permission, Role, role_permissions

logger = structlog.get_logger(__name__)


class RoleCatalog:
    """Reads and maintains roles and their (resource, action) permissions"""

    def __init__(self, db_session: AsyncSession) -> None:
        self.db = db_session

    # ==================== Lookups ====================

    async def permissions_for_role(self, role_id: str) -> frozenset[tuple[str, str]]:
        """All (resource, action) pairs granted to a role"""
        result = await self.db.execute(
            select(Permission.resource, Permission.action)
            .join(role_permissions, role_permissions.c.permission_id == Permission.id)
            .where(role_permissions.c.role_id == role_id)
        )
        return frozenset((resource, action) for resource, action in result.all())

    async def role_has_permission(self, role_id: str | None, resource: str, action: str) -> bool:
        """Exact pair match; no wildcards and no inheritance."""
        if not role_id:
            return False
        result = await self.db.execute(
            select(Permission.id)
            .join(role_permissions, role_permissions.c.permission_id == Permission.id)
            .where(
                role_permissions.c.role_id == role_id,
                Permission.resource == resource,
                Permission.action == action,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def get_role_by_name(self, name: str) -> Role | None:
        result = await self.db.execute(select(Role).where(Role.name == name))
        return result.scalar_one_or_none()

    # ==================== Seeding ====================

    async def ensure_permission(
        self, resource: str, action: str, description: str | None = None
    ) -> Permission:
        """Get or create a permission"""
        result = await self.db.execute(
            select(Permission).where(Permission.resource == resource, Permission.action == action)
        )
        permission = result.scalar_one_or_none()
        if permission is None:
            permission = Permission(
                resource=resource,
                action=action,
                description=description or f"{action.title()} {resource}",
            )
            self.db.add(permission)
            await self.db.flush()
            logger.info("rbac.permission.created", permission=permission.key)
        return permission

    async def ensure_role(
        self,
        name: str,
        display_name: str,
        description: str | None = None,
        is_system_role: bool = True,
    ) -> Role:
        """Get or create a role by name"""
        role = await self.get_role_by_name(name)
        if role is None:
            role = Role(
                name=name,
                display_name=display_name,
                description=description,
                is_system_role=is_system_role,
                permissions=[],
            )
            self.db.add(role)
            await self.db.flush()
            logger.info("rbac.role.created", role=name)
        return role

    async def grant(self, role: Role, permissions: list[Permission]) -> int:
        """Attach permissions to a role; returns how many were new"""
        held = {permission.id for permission in role.permissions}
        added = 0
        for permission in permissions:
            if permission.id in held:
                continue
            role.permissions.append(permission)
            held.add(permission.id)
            added += 1
        if added:
            await self.db.flush()
            logger.info("rbac.role.granted", role=role.name, added=added)
        return added
