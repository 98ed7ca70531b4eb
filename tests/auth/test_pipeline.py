"""
Tests for the ordered authorization pipeline.

Identities come from a static verifier so each check can be exercised on its
own; gating always reads the persisted tenant and subscription rows.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tenantgate.platform.auth.exceptions import AuthorizationDenied, DenyReason
from tenantgate.platform.auth.pipeline import AuthorizationPipeline, RouteRequirement
from tenantgate.platform.billing.enums import Feature, SubscriptionStatus, UsageResource
from tenantgate.platform.billing.metrics import BillingMetrics
from tenantgate.platform.billing.webhooks import SubscriptionStateMachine
from tenantgate.platform.tenant.context import TenantScope
from tenantgate.platform.tenant.models import TenantStatus
from tenantgate.platform.workspace.models import Project
from tests.helpers import charged_body, identity_for, payment_failed_body, sign

TOKEN = "token-1"

FINANCE = RouteRequirement.parse("finance:read", feature=Feature.FINANCE)
NEW_PROJECT = RouteRequirement.parse("projects:create", usage_resource=UsageResource.PROJECTS)


@pytest.fixture
def pipeline(async_db_session, static_verifier):
    return AuthorizationPipeline(async_db_session, static_verifier)


@pytest.fixture
def login(static_verifier):
    def _login(user, token: str = TOKEN) -> str:
        static_verifier.register(token, identity_for(user))
        return token

    return _login


@pytest.fixture
async def admin_setup(plans, roles, make_tenant, make_subscription, make_user):
    """A TRIAL tenant on the given plan with one NGO_ADMIN user."""

    async def _setup(plan: str = "STARTER", status: SubscriptionStatus = SubscriptionStatus.TRIAL):
        tenant = await make_tenant(status=TenantStatus.TRIAL)
        subscription = await make_subscription(tenant, plans[plan], status)
        user = await make_user(tenant, roles["NGO_ADMIN"])
        return tenant, subscription, user

    return _setup


async def add_projects(session, tenant, count: int) -> None:
    session.add_all([Project(name=f"Project {n}", tenant_id=tenant.id) for n in range(count)])
    await session.commit()


async def assert_denied(pipeline, requirement, reason: DenyReason, token: str | None = TOKEN):
    with pytest.raises(AuthorizationDenied) as exc_info:
        await pipeline.authorize(token, requirement)
    assert exc_info.value.reason == reason
    return exc_info.value


class TestIdentityAndTenant:
    async def test_missing_credential(self, pipeline):
        denied = await assert_denied(pipeline, None, DenyReason.UNAUTHENTICATED, token=None)
        assert denied.status_code == 401

    async def test_inactive_actor(self, pipeline, login, make_tenant, make_user):
        tenant = await make_tenant()
        login(await make_user(tenant, is_active=False))
        await assert_denied(pipeline, None, DenyReason.ACTOR_INACTIVE)

    async def test_identity_without_tenant(self, pipeline, login, make_user):
        login(await make_user(None))
        await assert_denied(pipeline, None, DenyReason.NO_TENANT)

    async def test_unknown_tenant(self, pipeline, static_verifier, make_tenant, make_user):
        tenant = await make_tenant()
        identity = identity_for(await make_user(tenant)).model_copy(update={"tenant_id": "gone"})
        static_verifier.register(TOKEN, identity)
        await assert_denied(pipeline, None, DenyReason.TENANT_NOT_FOUND)

    async def test_deactivated_tenant(self, pipeline, login, make_tenant, make_user):
        tenant = await make_tenant(is_active=False)
        login(await make_user(tenant))
        await assert_denied(pipeline, None, DenyReason.TENANT_INACTIVE)

    @pytest.mark.parametrize(
        "status,reason",
        [
            (TenantStatus.SUSPENDED, DenyReason.TENANT_SUSPENDED),
            (TenantStatus.EXPIRED, DenyReason.TENANT_EXPIRED),
        ],
    )
    async def test_blocked_tenant_statuses(
        self, pipeline, login, make_tenant, make_user, status, reason
    ):
        tenant = await make_tenant(status=status)
        login(await make_user(tenant))
        denied = await assert_denied(pipeline, None, reason)
        assert denied.status_code == 403
        assert denied.to_dict() == {"detail": "Forbidden"}

    async def test_past_due_tenant_passes_tenant_step(
        self, pipeline, login, make_tenant, make_user
    ):
        tenant = await make_tenant(status=TenantStatus.PAST_DUE)
        login(await make_user(tenant))

        result = await pipeline.authorize(TOKEN)

        assert result.tenant.id == tenant.id

    async def test_cancelled_tenant_has_no_entitlements(
        self, pipeline, login, plans, roles, make_tenant, make_subscription, make_user
    ):
        tenant = await make_tenant(status=TenantStatus.CANCELLED)
        await make_subscription(tenant, plans["GROWTH"], SubscriptionStatus.CANCELLED)
        login(await make_user(tenant, roles["NGO_ADMIN"]))

        await pipeline.authorize(TOKEN, RouteRequirement.parse("projects:read"))
        await assert_denied(pipeline, FINANCE, DenyReason.NO_ACTIVE_SUBSCRIPTION)


class TestPermissions:
    async def test_role_without_permission(self, pipeline, login, roles, make_tenant, make_user):
        tenant = await make_tenant()
        login(await make_user(tenant, roles["FIELD_STAFF"]))

        denied = await assert_denied(
            pipeline, RouteRequirement.parse("projects:create"), DenyReason.PERMISSION_DENIED
        )
        assert denied.context["permission"] == "projects:create"

    async def test_role_with_permission(self, pipeline, login, roles, make_tenant, make_user):
        tenant = await make_tenant()
        login(await make_user(tenant, roles["FIELD_STAFF"]))

        result = await pipeline.authorize(TOKEN, RouteRequirement.parse("projects:read"))

        assert result.identity.role_id == roles["FIELD_STAFF"].id

    async def test_no_role_denied(self, pipeline, login, roles, make_tenant, make_user):
        tenant = await make_tenant()
        login(await make_user(tenant))
        await assert_denied(
            pipeline, RouteRequirement.parse("projects:read"), DenyReason.PERMISSION_DENIED
        )

    async def test_identity_carried_permissions(
        self, pipeline, static_verifier, make_tenant, make_user
    ):
        tenant = await make_tenant()
        identity = identity_for(await make_user(tenant)).model_copy(
            update={"permissions": frozenset({("reports", "read")})}
        )
        static_verifier.register(TOKEN, identity)

        await pipeline.authorize(TOKEN, RouteRequirement.parse("reports:read"))

    def test_parse_rejects_malformed_permission(self):
        for bad in ("projects", "projects:", ":read"):
            with pytest.raises(ValueError):
                RouteRequirement.parse(bad)


class TestPlatformAdmin:
    async def test_bypasses_every_gate(self, pipeline, login, make_user):
        login(await make_user(None, is_platform_admin=True))
        requirement = RouteRequirement.parse(
            "finance:delete", feature=Feature.BRANDING, usage_resource=UsageResource.PROJECTS
        )

        result = await pipeline.authorize(TOKEN, requirement)

        assert result.tenant is None
        assert result.subscription is None

    async def test_admin_inside_suspended_tenant_gets_scope(
        self, pipeline, login, make_tenant, make_user
    ):
        tenant = await make_tenant(status=TenantStatus.SUSPENDED)
        login(await make_user(tenant, is_platform_admin=True))

        async with pipeline.scoped(TOKEN, FINANCE) as ctx:
            assert ctx.scope is not None
            assert ctx.scope.tenant_id == tenant.id
            assert ctx.scope.active

    async def test_inactive_admin_still_denied(self, pipeline, login, make_user):
        login(await make_user(None, is_active=False, is_platform_admin=True))
        await assert_denied(pipeline, None, DenyReason.ACTOR_INACTIVE)


class TestFeatureGate:
    async def test_plan_without_feature(self, pipeline, login, admin_setup):
        _, _, user = await admin_setup("STARTER")
        login(user)

        denied = await assert_denied(pipeline, FINANCE, DenyReason.FEATURE_NOT_IN_PLAN)
        assert denied.context["feature"] == "finance"

    async def test_plan_with_feature(self, pipeline, login, admin_setup):
        _, subscription, user = await admin_setup("GROWTH")
        login(user)

        result = await pipeline.authorize(TOKEN, FINANCE)

        assert result.subscription.id == subscription.id

    async def test_past_due_subscription_not_entitled(self, pipeline, login, admin_setup):
        _, _, user = await admin_setup("GROWTH", SubscriptionStatus.PAST_DUE)
        login(user)
        await assert_denied(pipeline, FINANCE, DenyReason.NO_ACTIVE_SUBSCRIPTION)

    async def test_no_subscription(self, pipeline, login, roles, make_tenant, make_user):
        tenant = await make_tenant()
        login(await make_user(tenant, roles["NGO_ADMIN"]))
        await assert_denied(pipeline, FINANCE, DenyReason.NO_ACTIVE_SUBSCRIPTION)


class TestQuotaGate:
    async def test_at_limit_is_denied(self, pipeline, login, admin_setup, async_db_session):
        tenant, _, user = await admin_setup("STARTER")
        await add_projects(async_db_session, tenant, 3)
        login(user)

        denied = await assert_denied(pipeline, NEW_PROJECT, DenyReason.QUOTA_EXCEEDED)
        assert denied.context["current"] == 3
        assert denied.context["limit"] == 3

    async def test_below_limit_is_allowed(self, pipeline, login, admin_setup, async_db_session):
        tenant, _, user = await admin_setup("STARTER")
        await add_projects(async_db_session, tenant, 2)
        login(user)

        await pipeline.authorize(TOKEN, NEW_PROJECT)

    async def test_deleted_rows_free_capacity(
        self, pipeline, login, admin_setup, async_db_session
    ):
        tenant, _, user = await admin_setup("STARTER")
        projects = [Project(name=f"Project {n}", tenant_id=tenant.id) for n in range(3)]
        async_db_session.add_all(projects)
        projects[0].soft_delete()
        await async_db_session.commit()
        login(user)

        await pipeline.authorize(TOKEN, NEW_PROJECT)

    async def test_other_tenants_do_not_count(
        self, pipeline, login, admin_setup, async_db_session, make_tenant
    ):
        _, _, user = await admin_setup("STARTER")
        other = await make_tenant(name="Other")
        await add_projects(async_db_session, other, 5)
        login(user)

        await pipeline.authorize(TOKEN, NEW_PROJECT)

    async def test_storage_never_blocks(self, pipeline, login, admin_setup):
        _, _, user = await admin_setup("STARTER")
        login(user)

        await pipeline.authorize(TOKEN, RouteRequirement(usage_resource=UsageResource.STORAGE))


class TestScopeLifetime:
    async def test_scope_open_inside_block_and_released_after(
        self, pipeline, login, admin_setup
    ):
        tenant, _, user = await admin_setup("STARTER")
        login(user)

        async with pipeline.scoped(TOKEN) as ctx:
            scope = ctx.scope
            assert scope.active
            assert ctx.tenant_id == tenant.id

        assert not scope.active

    async def test_scope_released_when_handler_raises(self, pipeline, login, admin_setup):
        _, _, user = await admin_setup("STARTER")
        login(user)

        with pytest.raises(RuntimeError):
            async with pipeline.scoped(TOKEN) as ctx:
                scope = ctx.scope
                raise RuntimeError("handler failed")

        assert not scope.active

    async def test_scope_released_on_denial(
        self, pipeline, login, admin_setup, async_db_session
    ):
        tenant, _, user = await admin_setup("STARTER")
        await add_projects(async_db_session, tenant, 3)
        login(user)

        with patch.object(TenantScope, "release", autospec=True) as release:
            await assert_denied(pipeline, NEW_PROJECT, DenyReason.QUOTA_EXCEEDED)

        release.assert_awaited_once()

    async def test_scope_released_when_a_check_fails_unexpectedly(
        self, pipeline, login, admin_setup
    ):
        _, _, user = await admin_setup("STARTER")
        login(user)
        lookup_failure = AsyncMock(side_effect=RuntimeError("role lookup failed"))

        with (
            patch.object(pipeline.roles, "role_has_permission", lookup_failure),
            patch.object(TenantScope, "release", autospec=True) as release,
        ):
            with pytest.raises(RuntimeError):
                await pipeline.authorize(TOKEN, RouteRequirement.parse("projects:read"))

        release.assert_awaited_once()

    async def test_no_scope_before_tenant_resolved(self, pipeline, login, make_tenant, make_user):
        tenant = await make_tenant(status=TenantStatus.SUSPENDED)
        login(await make_user(tenant))

        with patch.object(TenantScope, "acquire", autospec=True) as acquire:
            await assert_denied(pipeline, None, DenyReason.TENANT_SUSPENDED)

        acquire.assert_not_called()


class TestDenialRecording:
    async def test_denial_increments_metric(
        self, async_db_session, static_verifier, login, admin_setup
    ):
        metrics = MagicMock(spec=BillingMetrics)
        pipeline = AuthorizationPipeline(async_db_session, static_verifier, metrics=metrics)
        _, _, user = await admin_setup("STARTER")
        login(user)

        await assert_denied(pipeline, FINANCE, DenyReason.FEATURE_NOT_IN_PLAN)

        metrics.record_authorization_denied.assert_called_once_with("feature_not_in_plan")

    async def test_tenant_denial_is_audited_once_with_tenant(
        self, pipeline, login, make_tenant, make_user
    ):
        tenant = await make_tenant(status=TenantStatus.SUSPENDED)
        user = await make_user(tenant)
        login(user)

        with patch("tenantgate.platform.auth.pipeline.log_audit_event") as audit:
            await assert_denied(pipeline, None, DenyReason.TENANT_SUSPENDED)

        audit.assert_called_once()
        assert audit.call_args.kwargs["tenant_id"] == tenant.id
        assert audit.call_args.kwargs["user_id"] == user.id
        assert audit.call_args.kwargs["reason"] == "tenant_suspended"

    async def test_success_records_nothing(
        self, async_db_session, static_verifier, login, admin_setup
    ):
        metrics = MagicMock(spec=BillingMetrics)
        pipeline = AuthorizationPipeline(async_db_session, static_verifier, metrics=metrics)
        _, _, user = await admin_setup("GROWTH")
        login(user)

        await pipeline.authorize(TOKEN, FINANCE)

        metrics.record_authorization_denied.assert_not_called()


class TestLifecycleScenario:
    async def test_gates_follow_subscription_state(
        self, async_db_session, pipeline, login, plans, roles, make_tenant, make_subscription,
        make_user,
    ):
        """Trial grants the plan; a failed charge revokes it; a good charge restores it."""
        tenant = await make_tenant(status=TenantStatus.TRIAL)
        await make_subscription(tenant, plans["GROWTH"], external_ref="sub_flow_1")
        login(await make_user(tenant, roles["NGO_ADMIN"]))
        machine = SubscriptionStateMachine(async_db_session)

        await pipeline.authorize(TOKEN, FINANCE)

        failed = payment_failed_body("sub_flow_1", "pay_flow_1", "Card declined")
        await machine.apply_event(failed, sign(failed))
        await assert_denied(pipeline, FINANCE, DenyReason.NO_ACTIVE_SUBSCRIPTION)

        charged = charged_body("sub_flow_1", "pay_flow_2")
        await machine.apply_event(charged, sign(charged))
        result = await pipeline.authorize(TOKEN, FINANCE)

        assert result.subscription.status == SubscriptionStatus.ACTIVE
