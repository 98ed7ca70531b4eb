"""
Reference data: subscription plans, permissions and system roles.

Seeding is idempotent. Existing plans and roles are left as they are; missing
permissions and role grants are added.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.platform.auth.models import Permission
from tenantgate.platform.auth.rbac_service import RoleCatalog
from tenantgate.platform.billing.enums import PlanInterval
from tenantgate.platform.billing.models import Plan

logger = structlog.get_logger(__name__)

UNLIMITED = 999999

PLANS: list[dict[str, Any]] = [
    {
        "name": "STARTER",
        "display_name": "Starter",
        "description": "For small organizations getting started",
        "price": Decimal("0"),
        "max_projects": 3,
        "max_users": 3,
        "max_beneficiaries": 50,
        "max_storage": 512,
        "trial_days": 14,
        "sort_order": 1,
    },
    {
        "name": "GROWTH",
        "display_name": "Growth",
        "description": "For growing organizations with finance tracking",
        "price": Decimal("2999"),
        "max_projects": 10,
        "max_users": 10,
        "max_beneficiaries": 500,
        "max_storage": 2048,
        "finance_enabled": True,
        "trial_days": 14,
        "sort_order": 2,
    },
    {
        "name": "PRO",
        "display_name": "Professional",
        "description": "Compliance reporting and API access",
        "price": Decimal("5999"),
        "max_projects": 50,
        "max_users": 25,
        "max_beneficiaries": 2000,
        "max_storage": 5120,
        "finance_enabled": True,
        "compliance_enabled": True,
        "api_access": True,
        "custom_branding": False,
        "trial_days": 14,
        "sort_order": 3,
    },
    {
        "name": "ENTERPRISE",
        "display_name": "Enterprise",
        "description": "Unlimited usage with custom branding",
        "price": Decimal("14999"),
        "max_projects": UNLIMITED,
        "max_users": UNLIMITED,
        "max_beneficiaries": UNLIMITED,
        "max_storage": 51200,
        "finance_enabled": True,
        "compliance_enabled": True,
        "api_access": True,
        "custom_branding": True,
        "trial_days": 30,
        "sort_order": 4,
    },
]

PERMISSIONS: dict[str, tuple[str, ...]] = {
    "projects": ("create", "read", "update", "delete"),
    "beneficiaries": ("create", "read", "update", "delete", "approve"),
    "donors": ("create", "read", "update", "delete"),
    "finance": ("create", "read", "update", "delete", "approve"),
    "users": ("create", "read", "update", "delete"),
    "reports": ("read", "export"),
}


@dataclass(frozen=True)
class RoleSpec:
    name: str
    display_name: str
    description: str
    # resource -> allowed actions; None means every action of the resource
    grants: dict[str, tuple[str, ...] | None] = field(default_factory=dict)

    def allows(self, resource: str, action: str) -> bool:
        if resource not in self.grants:
            return False
        actions = self.grants[resource]
        return actions is None or action in actions


ROLES: list[RoleSpec] = [
    RoleSpec(
        "NGO_ADMIN",
        "NGO Administrator",
        "Full access to the organization",
        {resource: None for resource in PERMISSIONS},
    ),
    RoleSpec(
        "PROJECT_MANAGER",
        "Project Manager",
        "Manages projects and beneficiaries",
        {"projects": None, "beneficiaries": None, "reports": None},
    ),
    RoleSpec(
        "FINANCE_MANAGER",
        "Finance Manager",
        "Manages finances and donors",
        {"finance": None, "donors": None, "reports": None},
    ),
    RoleSpec(
        "FIELD_STAFF",
        "Field Staff",
        "Read access to projects and beneficiaries",
        {"projects": ("read",), "beneficiaries": ("read",)},
    ),
    RoleSpec("DONOR", "Donor", "Read-only access to reports", {"reports": ("read",)}),
]


@dataclass
class SeedSummary:
    plans_created: int = 0
    permissions: int = 0
    roles: int = 0
    grants_added: int = 0


async def seed_plans(db: AsyncSession) -> int:
    """Create missing plans; returns how many were created."""
    existing = set((await db.execute(select(Plan.name))).scalars().all())
    created = 0
    for data in PLANS:
        if data["name"] in existing:
            continue
        db.add(Plan(currency="INR", interval=PlanInterval.MONTHLY, **data))
        created += 1
        logger.info("seed.plan.created", plan=data["name"])
    await db.flush()
    return created


async def seed_rbac(db: AsyncSession, summary: SeedSummary) -> None:
    catalog = RoleCatalog(db)
    by_key: dict[tuple[str, str], Permission] = {}
    for resource, actions in PERMISSIONS.items():
        for action in actions:
            by_key[(resource, action)] = await catalog.ensure_permission(resource, action)
    summary.permissions = len(by_key)

    for spec in ROLES:
        role = await catalog.ensure_role(spec.name, spec.display_name, spec.description)
        wanted = [
            permission
            for (resource, action), permission in by_key.items()
            if spec.allows(resource, action)
        ]
        summary.grants_added += await catalog.grant(role, wanted)
        summary.roles += 1


async def seed_reference_data(db: AsyncSession) -> SeedSummary:
    """Seed plans, permissions and roles. Flushes; the caller commits."""
    summary = SeedSummary()
    summary.plans_created = await seed_plans(db)
    await seed_rbac(db, summary)
    logger.info(
        "seed.completed",
        plans_created=summary.plans_created,
        permissions=summary.permissions,
        roles=summary.roles,
        grants_added=summary.grants_added,
    )
    return summary
