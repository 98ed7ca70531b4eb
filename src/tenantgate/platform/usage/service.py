"""
Usage accounting.

Live counts of a tenant's non-deleted resources compared against the limits
of the plan behind its entitled (ACTIVE or TRIAL) subscription.

Storage is not measured: ``current_usage(..., STORAGE)`` always returns 0 and
logs ``usage.storage.not_tracked``, so the storage quota never blocks.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, assert_never

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.platform.auth.models import User
from tenantgate.platform.billing.enums import ENTITLED_SUBSCRIPTION_STATUSES, UsageResource
from tenantgate.platform.billing.ledger import SubscriptionLedger
from tenantgate.platform.billing.models import Plan
from tenantgate.platform.settings import get_settings
from tenantgate.platform.usage.models import UsageMetric
from tenantgate.platform.workspace.models import Beneficiary, Project

logger = structlog.get_logger(__name__)

# Resources the near-limit sweep warns about
WATCHED_RESOURCES: tuple[UsageResource, ...] = (
    UsageResource.PROJECTS,
    UsageResource.USERS,
    UsageResource.BENEFICIARIES,
)


@dataclass
class LimitCheck:
    """Usage compared with plan limits for one tenant."""

    tenant_id: str
    usage: dict[UsageResource, int]
    limits: dict[UsageResource, int]
    within: dict[UsageResource, bool] = field(default_factory=dict)
    percentages: dict[UsageResource, float] = field(default_factory=dict)

    @property
    def within_limits(self) -> bool:
        return all(self.within.values())

    def near_limit(self, threshold: float) -> list[UsageResource]:
        """Watched resources at or above ``threshold`` (a fraction) of their limit."""
        return [
            resource
            for resource in WATCHED_RESOURCES
            if self.percentages.get(resource, 0.0) >= threshold * 100
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "within_limits": self.within_limits,
            "usage": {k.value: v for k, v in self.usage.items()},
            "limits": {k.value: v for k, v in self.limits.items()},
            "checks": {k.value: v for k, v in self.within.items()},
            "percentages": {k.value: v for k, v in self.percentages.items()},
        }


def usage_percentage(current: int, limit: int) -> float:
    if limit <= 0:
        return 100.0 if current > 0 else 0.0
    return round(current / limit * 100, 2)


class UsageAccountant:
    """Counts tenant resources and reads plan limits."""

    def __init__(self, db_session: AsyncSession, ledger: SubscriptionLedger | None = None) -> None:
        self.db = db_session
        self.ledger = ledger or SubscriptionLedger(db_session)

    async def _count(self, model: Any, tenant_id: str) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(model)
            .where(model.tenant_id == tenant_id)
            .where(model.deleted_at.is_(None))
        )
        return int(result.scalar_one())

    async def current_usage(self, tenant_id: str, resource: UsageResource) -> int:
        """Live count of the tenant's non-deleted units of ``resource``."""
        match resource:
            case UsageResource.PROJECTS:
                return await self._count(Project, tenant_id)
            case UsageResource.USERS:
                return await self._count(User, tenant_id)
            case UsageResource.BENEFICIARIES:
                return await self._count(Beneficiary, tenant_id)
            case UsageResource.STORAGE:
                # TODO: sum object sizes once uploads record their byte counts
                logger.debug("usage.storage.not_tracked", tenant_id=tenant_id)
                return 0
            case _:
                assert_never(resource)

    def limit_for(self, plan: Plan, resource: UsageResource) -> int:
        return plan.limit_for(resource)

    async def usage_snapshot(self, tenant_id: str) -> dict[UsageResource, int]:
        """Current usage of every resource kind."""
        return {
            resource: await self.current_usage(tenant_id, resource) for resource in UsageResource
        }

    async def entitled_plan(self, tenant_id: str) -> Plan | None:
        subscription = await self.ledger.get_current_subscription(
            tenant_id, ENTITLED_SUBSCRIPTION_STATUSES
        )
        if subscription is None:
            return None
        return await self.ledger.get_plan(subscription.plan_id)

    async def usage_limits(self, tenant_id: str) -> dict[UsageResource, int] | None:
        """Plan limits for the tenant, or None without an entitled subscription."""
        plan = await self.entitled_plan(tenant_id)
        if plan is None:
            return None
        return {resource: self.limit_for(plan, resource) for resource in UsageResource}

    async def check_limits(self, tenant_id: str) -> LimitCheck | None:
        """Compare usage with limits; None when the tenant has no entitled subscription."""
        limits = await self.usage_limits(tenant_id)
        if limits is None:
            return None
        usage = await self.usage_snapshot(tenant_id)

        check = LimitCheck(tenant_id=tenant_id, usage=usage, limits=limits)
        for resource in UsageResource:
            check.within[resource] = usage[resource] <= limits[resource]
            check.percentages[resource] = usage_percentage(usage[resource], limits[resource])
        return check

    async def record_usage(self, tenant_id: str, metric: str, value: int) -> UsageMetric:
        """Append a usage metric row. Flushed; the caller commits."""
        row = UsageMetric(tenant_id=tenant_id, metric_type=metric, value=value)
        self.db.add(row)
        await self.db.flush()
        return row

    async def usage_history(self, tenant_id: str, days: int | None = None) -> list[UsageMetric]:
        """Metrics recorded for the tenant in the last ``days`` days, oldest first."""
        days = days or get_settings().usage.history_days_default
        since = datetime.now(UTC) - timedelta(days=days)
        result = await self.db.execute(
            select(UsageMetric)
            .where(UsageMetric.tenant_id == tenant_id)
            .where(UsageMetric.recorded_at >= since)
            .order_by(UsageMetric.recorded_at)
        )
        return list(result.scalars().all())
