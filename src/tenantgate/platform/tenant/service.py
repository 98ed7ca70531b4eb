"""
Tenant directory access.

Point lookups by primary key for the authorization pipeline, status
transitions for the subscription state machine and the tenant listing used
by the background sweeps.
"""

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.platform.tenant.models import Tenant, TenantStatus

logger = structlog.get_logger(__name__)

# Tenants the usage sweeps iterate over
SWEEPABLE_STATUSES: tuple[TenantStatus, ...] = (TenantStatus.ACTIVE, TenantStatus.TRIAL)


class TenantDirectory:
    """Read and transition tenant records."""

    def __init__(self, db_session: AsyncSession) -> None:
        self.db = db_session

    async def get_tenant(self, tenant_id: str) -> Tenant | None:
        """Load a tenant by id."""
        return await self.db.get(Tenant, tenant_id)

    async def transition(self, tenant: Tenant, status: TenantStatus, *, reason: str) -> Tenant:
        """Move a tenant to a new lifecycle status.

        The change is flushed, not committed; the caller owns the transaction.
        """
        previous = tenant.status
        if previous == status:
            return tenant

        tenant.status = status
        await self.db.flush()

        logger.info(
            "tenant.status.changed",
            tenant_id=tenant.id,
            previous_status=previous.value,
            new_status=status.value,
            reason=reason,
        )
        return tenant

    async def list_sweepable_tenant_ids(self) -> list[str]:
        """Ids of active tenants in ACTIVE or TRIAL status."""
        result = await self.db.execute(
            select(Tenant.id)
            .where(Tenant.is_active.is_(True))
            .where(Tenant.status.in_(SWEEPABLE_STATUSES))
            .order_by(Tenant.created_at)
        )
        return list(result.scalars().all())
