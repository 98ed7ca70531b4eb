"""
Subscription ledger access.

Read helpers used by the authorization gates and the webhook state machine,
plus the lapse transitions ("any state -> EXPIRED") and the trial sweep.
"""

from collections.abc import Sequence
from datetime import UTC, datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.platform.billing.enums import (
    CURRENT_SUBSCRIPTION_STATUSES,
    SubscriptionStatus,
)
from tenantgate.platform.billing.exceptions import SubscriptionNotFoundError
from tenantgate.platform.billing.metrics import BillingMetrics, get_billing_metrics
from tenantgate.platform.billing.models import Invoice, Payment, Plan, Subscription
from tenantgate.platform.db import get_async_db
from tenantgate.platform.logging import log_audit_event
from tenantgate.platform.sweeps import SweepReport, run_isolated
from tenantgate.platform.tenant.models import Tenant, TenantStatus
from tenantgate.platform.tenant.service import TenantDirectory

logger = structlog.get_logger(__name__)


class SubscriptionLedger:
    """Durable record of subscriptions, payments and invoices."""

    def __init__(self, db_session: AsyncSession, metrics: BillingMetrics | None = None) -> None:
        self.db = db_session
        self.metrics = metrics or get_billing_metrics()
        self.tenants = TenantDirectory(db_session)

    # ==================== Reads ====================

    async def get_current_subscription(
        self,
        tenant_id: str,
        statuses: Sequence[SubscriptionStatus] = CURRENT_SUBSCRIPTION_STATUSES,
    ) -> Subscription | None:
        """The tenant's subscription in one of ``statuses``, newest first."""
        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.tenant_id == tenant_id)
            .where(Subscription.status.in_(tuple(statuses)))
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_plan(self, plan_id: str) -> Plan | None:
        return await self.db.get(Plan, plan_id)

    async def get_by_external_ref(
        self, external_ref: str, *, for_update: bool = False
    ) -> Subscription | None:
        stmt = select(Subscription).where(Subscription.external_subscription_ref == external_ref)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_payment_by_external_ref(self, external_ref: str) -> Payment | None:
        result = await self.db.execute(
            select(Payment).where(Payment.external_payment_ref == external_ref)
        )
        return result.scalar_one_or_none()

    async def get_invoice_for_payment(self, payment_id: str) -> Invoice | None:
        result = await self.db.execute(select(Invoice).where(Invoice.payment_id == payment_id))
        return result.scalar_one_or_none()

    async def list_invoices(self, subscription_id: str) -> list[Invoice]:
        result = await self.db.execute(
            select(Invoice)
            .where(Invoice.subscription_id == subscription_id)
            .order_by(Invoice.created_at)
        )
        return list(result.scalars().all())

    # ==================== Transitions ====================

    def transition(
        self, subscription: Subscription, status: SubscriptionStatus, *, reason: str
    ) -> None:
        """Set a new subscription status and record it. Not flushed."""
        previous = subscription.status
        subscription.status = status
        if previous == status:
            return
        self.metrics.record_transition(previous.value, status.value)
        log_audit_event(
            "subscription.status.changed",
            "billing",
            tenant_id=subscription.tenant_id,
            resource_type="subscription",
            resource_id=subscription.id,
            previous_status=previous.value,
            new_status=status.value,
            reason=reason,
        )

    async def expire_subscription(
        self, subscription_id: str, *, reason: str = "lapsed"
    ) -> Subscription:
        """Expire a subscription and its tenant, then commit."""
        subscription = await self.db.get(Subscription, subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(
                f"Subscription {subscription_id} not found", subscription_id=subscription_id
            )

        try:
            self.transition(subscription, SubscriptionStatus.EXPIRED, reason=reason)
            tenant = await self.tenants.get_tenant(subscription.tenant_id)
            if tenant is not None:
                await self.tenants.transition(tenant, TenantStatus.EXPIRED, reason=reason)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "subscription.expired",
            subscription_id=subscription.id,
            tenant_id=subscription.tenant_id,
            reason=reason,
        )
        return subscription

    async def cancel_subscription(
        self, tenant_id: str, *, at_period_end: bool = False, reason: str = "requested"
    ) -> Subscription:
        """Cancel the tenant's current subscription, then commit.

        Immediate cancellation moves the subscription and the tenant to
        CANCELLED. With ``at_period_end`` the subscription keeps its status
        until the processor reports the cancellation at the end of the cycle;
        only ``canceled_at`` and ``cancel_at`` are recorded.
        """
        subscription = await self.get_current_subscription(tenant_id)
        if subscription is None:
            raise SubscriptionNotFoundError(f"No current subscription for tenant {tenant_id}")

        now = datetime.now(UTC)
        try:
            subscription.canceled_at = now
            if at_period_end:
                subscription.cancel_at = subscription.current_period_end
            else:
                subscription.cancel_at = now
                self.transition(subscription, SubscriptionStatus.CANCELLED, reason=reason)
                tenant = await self.tenants.get_tenant(tenant_id)
                if tenant is not None:
                    await self.tenants.transition(tenant, TenantStatus.CANCELLED, reason=reason)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "subscription.cancelled",
            subscription_id=subscription.id,
            tenant_id=tenant_id,
            at_period_end=at_period_end,
            reason=reason,
        )
        return subscription

    async def list_lapsed_trial_ids(self, now: datetime) -> list[str]:
        """TRIAL subscriptions whose tenant's trial window has closed."""
        result = await self.db.execute(
            select(Subscription.id)
            .join(Tenant, Tenant.id == Subscription.tenant_id)
            .where(Subscription.status == SubscriptionStatus.TRIAL)
            .where(Tenant.trial_ends_at.is_not(None))
            .where(Tenant.trial_ends_at <= now)
        )
        return list(result.scalars().all())


async def expire_lapsed_trials(now: datetime | None = None) -> SweepReport:
    """Expire every TRIAL subscription past its tenant's trial end.

    Each subscription is expired in its own session; failures are isolated.
    """
    now = now or datetime.now(UTC)
    async with get_async_db() as session:
        subscription_ids = await SubscriptionLedger(session).list_lapsed_trial_ids(now)

    async def _expire(session: AsyncSession, subscription_id: str) -> bool:
        await SubscriptionLedger(session).expire_subscription(
            subscription_id, reason="trial_lapsed"
        )
        return True

    return await run_isolated("billing.trial_sweep", subscription_ids, _expire)
