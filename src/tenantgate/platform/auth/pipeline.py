"""
Request authorization pipeline.

Every tenant-scoped request passes the same ordered checks, each of which
either passes or denies with a specific ``DenyReason``:

1. identity resolution through the ``CredentialVerifier``
2. actor activity
3. tenant scope (platform admins bypass)
4. permission, when the route declares one
5. plan feature, when the route declares one
6. usage quota, when the route declares a resource

Gating is always evaluated from the persisted subscription and tenant rows,
never from state cached on the identity.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.platform.auth.core import CredentialVerifier, IdentityClaim
from tenantgate.platform.auth.exceptions import AuthorizationDenied, DenyReason
from tenantgate.platform.auth.rbac_service import RoleCatalog
from tenantgate.platform.billing.enums import (
    ENTITLED_SUBSCRIPTION_STATUSES,
    Feature,
    UsageResource,
)
from tenantgate.platform.billing.ledger import SubscriptionLedger
from tenantgate.platform.billing.metrics import BillingMetrics, get_billing_metrics
from tenantgate.platform.billing.models import Plan, Subscription
from tenantgate.platform.logging import log_audit_event
from tenantgate.platform.tenant.context import TenantScope
from tenantgate.platform.tenant.models import Tenant, TenantStatus
from tenantgate.platform.tenant.service import TenantDirectory
from tenantgate.platform.usage.service import UsageAccountant

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RouteRequirement:
    """What a route needs beyond an authenticated, in-scope actor."""

    permission: tuple[str, str] | None = None
    feature: Feature | None = None
    usage_resource: UsageResource | None = None

    @classmethod
    def parse(
        cls,
        permission: str | None = None,
        feature: Feature | None = None,
        usage_resource: UsageResource | None = None,
    ) -> "RouteRequirement":
        """Build a requirement from a ``"resource:action"`` string."""
        pair: tuple[str, str] | None = None
        if permission is not None:
            resource, sep, action = permission.partition(":")
            if not sep or not resource or not action:
                raise ValueError(f"Permission must look like 'resource:action', got {permission!r}")
            pair = (resource, action)
        return cls(permission=pair, feature=feature, usage_resource=usage_resource)


@dataclass
class AuthorizationResult:
    """Outcome of a successful ``authorize`` call."""

    identity: IdentityClaim
    tenant: Tenant | None = None
    subscription: Subscription | None = None


@dataclass
class RequestContext:
    """What a handler receives from ``require``.

    ``scope`` is None only for platform admins without a tenant.
    """

    identity: IdentityClaim
    tenant: Tenant | None
    subscription: Subscription | None
    scope: TenantScope | None

    @property
    def tenant_id(self) -> str | None:
        return self.tenant.id if self.tenant is not None else None


class AuthorizationPipeline:
    """Runs the ordered authorization checks for one request."""

    def __init__(
        self,
        db_session: AsyncSession,
        verifier: CredentialVerifier,
        roles: RoleCatalog | None = None,
        ledger: SubscriptionLedger | None = None,
        accountant: UsageAccountant | None = None,
        metrics: BillingMetrics | None = None,
    ) -> None:
        self.db = db_session
        self.verifier = verifier
        self.roles = roles or RoleCatalog(db_session)
        self.ledger = ledger or SubscriptionLedger(db_session)
        self.tenants = TenantDirectory(db_session)
        self.accountant = accountant or UsageAccountant(db_session, self.ledger)
        self.metrics = metrics or get_billing_metrics()

    async def authorize(
        self, credential: str | None, requirement: RouteRequirement | None = None
    ) -> AuthorizationResult:
        """Run every check without holding a tenant scope."""
        async with self.scoped(credential, requirement) as context:
            return AuthorizationResult(
                identity=context.identity,
                tenant=context.tenant,
                subscription=context.subscription,
            )

    @asynccontextmanager
    async def scoped(
        self, credential: str | None, requirement: RouteRequirement | None = None
    ) -> AsyncIterator[RequestContext]:
        """Authorize and hold the tenant scope until the block exits."""
        requirement = requirement or RouteRequirement()
        identity: IdentityClaim | None = None
        tenant: Tenant | None = None
        scope: TenantScope | None = None
        try:
            try:
                identity = await self.verifier.verify(credential)
                self._check_actor(identity)
                tenant = await self._resolve_tenant(identity)

                if tenant is not None:
                    scope = TenantScope(self.db, tenant.id)
                    await scope.acquire()

                await self._check_permission(identity, requirement)
                subscription = await self._check_entitlements(identity, tenant, requirement)
            except AuthorizationDenied as exc:
                self._record_denial(exc, identity, tenant, requirement)
                raise

            yield RequestContext(
                identity=identity, tenant=tenant, subscription=subscription, scope=scope
            )
        finally:
            # Released on every exit path
            if scope is not None:
                await scope.release()

    # ==================== Checks ====================

    def _check_actor(self, identity: IdentityClaim) -> None:
        if not identity.is_active:
            raise AuthorizationDenied(DenyReason.ACTOR_INACTIVE, "Actor is deactivated")

    async def _resolve_tenant(self, identity: IdentityClaim) -> Tenant | None:
        if identity.is_platform_admin:
            # Admins acting inside a tenant still get its scope, without status checks
            if identity.tenant_id:
                return await self.tenants.get_tenant(identity.tenant_id)
            return None

        if not identity.tenant_id:
            raise AuthorizationDenied(DenyReason.NO_TENANT, "Identity is not bound to a tenant")

        tenant = await self.tenants.get_tenant(identity.tenant_id)
        if tenant is None:
            raise AuthorizationDenied(DenyReason.TENANT_NOT_FOUND, tenant_id=identity.tenant_id)
        if not tenant.is_active:
            raise AuthorizationDenied(DenyReason.TENANT_INACTIVE, tenant_id=tenant.id)
        if tenant.status == TenantStatus.SUSPENDED:
            raise AuthorizationDenied(DenyReason.TENANT_SUSPENDED, tenant_id=tenant.id)
        if tenant.status == TenantStatus.EXPIRED:
            raise AuthorizationDenied(DenyReason.TENANT_EXPIRED, tenant_id=tenant.id)
        return tenant

    async def _check_permission(
        self, identity: IdentityClaim, requirement: RouteRequirement
    ) -> None:
        if requirement.permission is None or identity.is_platform_admin:
            return
        resource, action = requirement.permission
        if (resource, action) in identity.permissions:
            return
        if await self.roles.role_has_permission(identity.role_id, resource, action):
            return
        raise AuthorizationDenied(
            DenyReason.PERMISSION_DENIED,
            f"Missing permission {resource}:{action}",
            permission=f"{resource}:{action}",
        )

    async def _check_entitlements(
        self,
        identity: IdentityClaim,
        tenant: Tenant | None,
        requirement: RouteRequirement,
    ) -> Subscription | None:
        """Feature gate then usage quota; returns the entitled subscription if loaded."""
        if identity.is_platform_admin or tenant is None:
            return None
        if requirement.feature is None and requirement.usage_resource is None:
            return None

        subscription = await self.ledger.get_current_subscription(
            tenant.id, ENTITLED_SUBSCRIPTION_STATUSES
        )
        plan = await self.ledger.get_plan(subscription.plan_id) if subscription else None
        if subscription is None or plan is None:
            raise AuthorizationDenied(DenyReason.NO_ACTIVE_SUBSCRIPTION, tenant_id=tenant.id)

        if requirement.feature is not None:
            self._check_feature(plan, requirement.feature)
        if requirement.usage_resource is not None:
            await self._check_quota(tenant.id, plan, requirement.usage_resource)
        return subscription

    def _check_feature(self, plan: Plan, feature: Feature) -> None:
        if not plan.has_feature(feature):
            raise AuthorizationDenied(
                DenyReason.FEATURE_NOT_IN_PLAN,
                f"Plan {plan.name} does not include {feature.value}",
                feature=feature.value,
                plan=plan.name,
            )

    async def _check_quota(self, tenant_id: str, plan: Plan, resource: UsageResource) -> None:
        current = await self.accountant.current_usage(tenant_id, resource)
        limit = self.accountant.limit_for(plan, resource)
        # Checked before the new unit exists, so reaching the limit already blocks
        if current >= limit:
            raise AuthorizationDenied(
                DenyReason.QUOTA_EXCEEDED,
                f"{resource.value} limit reached ({current}/{limit})",
                resource=resource.value,
                current=current,
                limit=limit,
            )

    # ==================== Denials ====================

    def _record_denial(
        self,
        exc: AuthorizationDenied,
        identity: IdentityClaim | None,
        tenant: Tenant | None,
        requirement: RouteRequirement,
    ) -> None:
        subject_id = identity.subject_id if identity else None
        details: dict[str, Any] = {
            "reason": exc.reason.value,
            "detail": exc.detail,
            **exc.context,
        }
        # Denial context may name the tenant itself; it is logged once as tenant_id
        context_tenant_id = details.pop("tenant_id", None)
        tenant_id = tenant.id if tenant else (identity.tenant_id if identity else None)
        tenant_id = tenant_id or context_tenant_id
        if requirement.permission is not None:
            details.setdefault("permission", ":".join(requirement.permission))

        logger.warning(
            "authorization.denied", subject_id=subject_id, tenant_id=tenant_id, **details
        )
        log_audit_event(
            "authorization.denied",
            "authorization",
            user_id=subject_id,
            tenant_id=tenant_id,
            **details,
        )
        self.metrics.record_authorization_denied(exc.reason.value)
