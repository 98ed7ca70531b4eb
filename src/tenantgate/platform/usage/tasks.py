"""
Scheduled usage sweeps.

Both sweeps walk every active tenant in ACTIVE or TRIAL status. Each tenant is
handled in its own session; a failing tenant is logged and skipped.
"""

from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.platform.celery_app import celery_app
from tenantgate.platform.db import get_async_db
from tenantgate.platform.settings import get_settings
from tenantgate.platform.sweeps import SweepReport, run_isolated, run_sweep
from tenantgate.platform.tenant.service import TenantDirectory
from tenantgate.platform.usage.service import UsageAccountant

logger = structlog.get_logger(__name__)


async def _sweepable_tenant_ids() -> list[str]:
    async with get_async_db() as session:
        return await TenantDirectory(session).list_sweepable_tenant_ids()


async def record_daily_snapshots() -> SweepReport:
    """Append one metric row per resource kind for every sweepable tenant."""
    tenant_ids = await _sweepable_tenant_ids()

    async def _snapshot(session: AsyncSession, tenant_id: str) -> bool:
        accountant = UsageAccountant(session)
        usage = await accountant.usage_snapshot(tenant_id)
        for resource, value in usage.items():
            await accountant.record_usage(tenant_id, resource.value, value)
        logger.debug("usage.snapshot.recorded", tenant_id=tenant_id)
        return False

    return await run_isolated("usage.snapshot_sweep", tenant_ids, _snapshot)


async def flag_tenants_near_limits(threshold: float | None = None) -> SweepReport:
    """Flag tenants at or above ``threshold`` of a limit, or over any limit."""
    threshold = threshold if threshold is not None else get_settings().usage.warning_threshold
    tenant_ids = await _sweepable_tenant_ids()

    async def _check(session: AsyncSession, tenant_id: str) -> bool:
        check = await UsageAccountant(session).check_limits(tenant_id)
        if check is None:
            return False
        near = check.near_limit(threshold)
        if near or not check.within_limits:
            # Notification delivery is external; the warning log is the hand-off
            logger.warning(
                "usage.limit.approaching",
                tenant_id=tenant_id,
                resources=[resource.value for resource in near],
                within_limits=check.within_limits,
                percentages={k.value: v for k, v in check.percentages.items()},
            )
            return True
        return False

    return await run_isolated("usage.limit_sweep", tenant_ids, _check)


@celery_app.task(name="usage.record_daily_snapshots")
def record_daily_snapshots_task() -> dict[str, Any]:
    """Periodic task: daily usage snapshot."""
    return run_sweep(record_daily_snapshots)


@celery_app.task(name="usage.flag_tenants_near_limits")
def flag_tenants_near_limits_task() -> dict[str, Any]:
    """Periodic task: daily near-limit check."""
    return run_sweep(flag_tenants_near_limits)
