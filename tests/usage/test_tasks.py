"""Tests for the scheduled usage sweeps."""

from unittest.mock import patch

from sqlalchemy import func, select

from tenantgate.platform.billing.enums import SubscriptionStatus
from tenantgate.platform.tenant.models import TenantStatus
from tenantgate.platform.usage.models import UsageMetric
from tenantgate.platform.usage.service import UsageAccountant
from tenantgate.platform.usage.tasks import flag_tenants_near_limits, record_daily_snapshots
from tenantgate.platform.workspace.models import Project


class TestSnapshotSweep:
    async def test_one_row_per_resource_for_sweepable_tenants(
        self, async_db_session, make_tenant
    ):
        trial = await make_tenant(status=TenantStatus.TRIAL, name="Trial")
        await make_tenant(status=TenantStatus.SUSPENDED, name="Suspended")

        report = await record_daily_snapshots()

        assert report.processed == 1
        assert report.failed == 0
        rows = (await async_db_session.execute(select(UsageMetric))).scalars().all()
        assert len(rows) == 4
        assert {row.tenant_id for row in rows} == {trial.id}
        assert {row.metric_type for row in rows} == {"projects", "users", "beneficiaries", "storage"}


class TestLimitSweep:
    async def test_flags_tenant_at_limit(
        self, async_db_session, plans, make_tenant, make_subscription
    ):
        full = await make_tenant(name="Full")
        await make_subscription(full, plans["STARTER"], external_ref="sub_full")
        roomy = await make_tenant(name="Roomy")
        await make_subscription(roomy, plans["ENTERPRISE"], external_ref="sub_roomy")
        for tenant in (full, roomy):
            async_db_session.add_all(
                [Project(name=f"P{n}", tenant_id=tenant.id) for n in range(3)]
            )
        await async_db_session.commit()

        report = await flag_tenants_near_limits()

        assert report.processed == 2
        assert report.flagged == [full.id]

    async def test_tenant_without_subscription_is_skipped(self, make_tenant):
        await make_tenant()

        report = await flag_tenants_near_limits()

        assert report.processed == 1
        assert report.flagged == []

    async def test_one_failing_tenant_does_not_stop_the_sweep(
        self, async_db_session, plans, make_tenant, make_subscription
    ):
        broken = await make_tenant(name="Broken")
        await make_subscription(broken, plans["STARTER"], SubscriptionStatus.ACTIVE, "sub_broken")
        healthy = await make_tenant(name="Healthy")
        await make_subscription(healthy, plans["STARTER"], SubscriptionStatus.ACTIVE, "sub_ok")
        async_db_session.add_all([Project(name=f"P{n}", tenant_id=healthy.id) for n in range(3)])
        await async_db_session.commit()

        original = UsageAccountant.check_limits

        async def flaky(self, tenant_id):
            if tenant_id == broken.id:
                raise RuntimeError("count failed")
            return await original(self, tenant_id)

        with patch.object(UsageAccountant, "check_limits", flaky):
            report = await flag_tenants_near_limits()

        assert report.failed == 1
        assert report.processed == 1
        assert report.flagged == [healthy.id]

    async def test_threshold_override(
        self, async_db_session, plans, make_tenant, make_subscription
    ):
        tenant = await make_tenant()
        await make_subscription(tenant, plans["GROWTH"])
        async_db_session.add(Project(name="Only one", tenant_id=tenant.id))
        await async_db_session.commit()

        assert (await flag_tenants_near_limits(threshold=0.8)).flagged == []
        assert (await flag_tenants_near_limits(threshold=0.05)).flagged == [tenant.id]


class TestSnapshotCount:
    async def test_repeated_runs_append(self, async_db_session, make_tenant):
        await make_tenant()

        await record_daily_snapshots()
        await record_daily_snapshots()

        total = (
            await async_db_session.execute(select(func.count()).select_from(UsageMetric))
        ).scalar_one()
        assert total == 8
