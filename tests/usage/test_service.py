"""Tests for usage counting and limit checks."""

from datetime import UTC, datetime, timedelta

import pytest

from tenantgate.platform.billing.enums import SubscriptionStatus, UsageResource
from tenantgate.platform.usage.models import UsageMetric
from tenantgate.platform.usage.service import UsageAccountant, usage_percentage
from tenantgate.platform.workspace.models import Beneficiary, Project


@pytest.fixture
def accountant(async_db_session):
    return UsageAccountant(async_db_session)


class TestCurrentUsage:
    async def test_counts_exclude_deleted_and_foreign_rows(
        self, accountant, async_db_session, make_tenant
    ):
        tenant = await make_tenant(name="Counted")
        other = await make_tenant(name="Other")
        removed = Project(name="Removed", tenant_id=tenant.id)
        removed.soft_delete()
        async_db_session.add_all(
            [
                Project(name="Live 1", tenant_id=tenant.id),
                Project(name="Live 2", tenant_id=tenant.id),
                removed,
                Project(name="Foreign", tenant_id=other.id),
                Beneficiary(name="Asha", tenant_id=tenant.id),
            ]
        )
        await async_db_session.commit()

        assert await accountant.current_usage(tenant.id, UsageResource.PROJECTS) == 2
        assert await accountant.current_usage(tenant.id, UsageResource.BENEFICIARIES) == 1

    async def test_users_are_counted(self, accountant, async_db_session, make_tenant, make_user):
        tenant = await make_tenant()
        await make_user(tenant)
        deleted = await make_user(tenant)
        deleted.soft_delete()
        await async_db_session.commit()
        await make_user(None)

        assert await accountant.current_usage(tenant.id, UsageResource.USERS) == 1

    async def test_storage_is_not_tracked(self, accountant, make_tenant):
        tenant = await make_tenant()
        assert await accountant.current_usage(tenant.id, UsageResource.STORAGE) == 0

    async def test_snapshot_covers_every_resource(self, accountant, make_tenant):
        tenant = await make_tenant()
        snapshot = await accountant.usage_snapshot(tenant.id)
        assert set(snapshot) == set(UsageResource)


class TestCheckLimits:
    async def test_none_without_entitled_subscription(
        self, accountant, plans, make_tenant, make_subscription
    ):
        tenant = await make_tenant()
        await make_subscription(tenant, plans["GROWTH"], SubscriptionStatus.PAST_DUE)

        assert await accountant.check_limits(tenant.id) is None
        assert await accountant.usage_limits(tenant.id) is None

    async def test_at_limit_is_within_and_over_is_not(
        self, accountant, async_db_session, plans, make_tenant, make_subscription
    ):
        tenant = await make_tenant()
        await make_subscription(tenant, plans["STARTER"])
        async_db_session.add_all([Project(name=f"P{n}", tenant_id=tenant.id) for n in range(3)])
        async_db_session.add_all(
            [Beneficiary(name=f"B{n}", tenant_id=tenant.id) for n in range(51)]
        )
        await async_db_session.commit()

        check = await accountant.check_limits(tenant.id)

        assert check.limits[UsageResource.PROJECTS] == 3
        assert check.within[UsageResource.PROJECTS] is True
        assert check.percentages[UsageResource.PROJECTS] == 100.0
        assert check.within[UsageResource.BENEFICIARIES] is False
        assert check.within_limits is False
        assert check.near_limit(0.8) == [UsageResource.PROJECTS, UsageResource.BENEFICIARIES]

    async def test_to_dict_uses_resource_names(
        self, accountant, plans, make_tenant, make_subscription
    ):
        tenant = await make_tenant()
        await make_subscription(tenant, plans["PRO"], SubscriptionStatus.ACTIVE)

        data = (await accountant.check_limits(tenant.id)).to_dict()

        assert data["within_limits"] is True
        assert data["limits"]["projects"] == 50
        assert data["usage"]["storage"] == 0


class TestUsagePercentage:
    @pytest.mark.parametrize(
        "current,limit,expected",
        [(0, 10, 0.0), (1, 3, 33.33), (3, 3, 100.0), (0, 0, 0.0), (2, 0, 100.0)],
    )
    def test_values(self, current, limit, expected):
        assert usage_percentage(current, limit) == expected


class TestHistory:
    async def test_record_and_read_back(self, accountant, async_db_session, make_tenant):
        tenant = await make_tenant()
        await accountant.record_usage(tenant.id, "projects", 2)
        async_db_session.add(
            UsageMetric(
                tenant_id=tenant.id,
                metric_type="projects",
                value=1,
                recorded_at=datetime.now(UTC) - timedelta(days=90),
            )
        )
        await async_db_session.commit()

        recent = await accountant.usage_history(tenant.id)
        everything = await accountant.usage_history(tenant.id, days=365)

        assert [(m.metric_type, m.value) for m in recent] == [("projects", 2)]
        assert [m.value for m in everything] == [1, 2]
