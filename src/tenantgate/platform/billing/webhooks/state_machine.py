"""
Subscription lifecycle state machine driven by payment-processor webhooks.

States::

    TRIAL -> ACTIVE -> {PAST_DUE, CANCELLED, EXPIRED}
    PAST_DUE -> ACTIVE          (later successful charge)
    ACTIVE/TRIAL/PAST_DUE -> CANCELLED
    any -> EXPIRED              (lapse)

PAST_DUE never moves to SUSPENDED here; suspension after a grace period is
left to an operator policy that does not exist yet.

Every event is signature-checked before the database is touched. Each event
is applied in one transaction owned by this class: it commits on success and
rolls back on any failure. Payment events are idempotent on the processor's
payment id, enforced by the UNIQUE constraint on
``payments.external_payment_ref``.
"""

from datetime import UTC, datetime
from typing import assert_never

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.platform.billing.enums import (
    CURRENT_SUBSCRIPTION_STATUSES,
    InvoiceStatus,
    PaymentStatus,
    SubscriptionStatus,
)
from tenantgate.platform.billing.exceptions import BillingError, TransientStoreError
from tenantgate.platform.billing.invoicing import InvoiceNumberAllocator
from tenantgate.platform.billing.ledger import SubscriptionLedger
from tenantgate.platform.billing.metrics import BillingMetrics, get_billing_metrics
from tenantgate.platform.billing.models import Invoice, Payment, Subscription
from tenantgate.platform.billing.webhooks.events import (
    WebhookEnvelope,
    WebhookEventType,
    WebhookOutcome,
    WebhookResult,
    from_unix,
    parse_envelope,
    to_major_units,
)
from tenantgate.platform.billing.webhooks.signature import verify_signature
from tenantgate.platform.db import generate_id
from tenantgate.platform.settings import get_settings
from tenantgate.platform.tenant.models import TenantStatus

logger = structlog.get_logger(__name__)

# Terminal subscriptions are never brought back by a late or replayed event
TERMINAL_STATUSES = (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED)


class SubscriptionStateMachine:
    """Applies verified billing events to the subscription ledger."""

    def __init__(
        self,
        db_session: AsyncSession,
        secret: str | None = None,
        metrics: BillingMetrics | None = None,
    ) -> None:
        settings = get_settings()
        self.db = db_session
        self.secret = secret if secret is not None else settings.billing.webhook_secret
        self.metrics = metrics or get_billing_metrics()
        self.ledger = SubscriptionLedger(db_session, self.metrics)
        self.allocator = InvoiceNumberAllocator(db_session)
        self.default_currency = settings.billing.default_currency
        self.minor_units = settings.billing.minor_units_per_major

    def _now(self) -> datetime:
        return datetime.now(UTC)

    async def apply_event(self, raw_payload: bytes, signature: str | None) -> WebhookResult:
        """Verify, decode and apply one webhook delivery.

        Raises:
            InvalidSignatureError: signature missing or wrong (permanent)
            MalformedEventError: body is not a usable event (permanent)
            TransientStoreError: database failure, safe to redeliver
        """
        verify_signature(raw_payload, signature, self.secret)
        envelope = parse_envelope(raw_payload)
        self.metrics.record_webhook_received(envelope.event)

        event_type = WebhookEventType.parse(envelope.event)
        if event_type is None:
            logger.warning("webhook.event.unhandled", event_type=envelope.event)
            result = WebhookResult(envelope.event, WebhookOutcome.IGNORED, detail="unhandled_event")
            self.metrics.record_webhook_outcome(envelope.event, result.outcome.value)
            return result

        try:
            result = await self._dispatch(event_type, envelope)
        except BillingError as exc:
            await self.db.rollback()
            self.metrics.record_webhook_failed(envelope.event, exc.error_code)
            raise
        except SQLAlchemyError as exc:
            await self.db.rollback()
            self.metrics.record_webhook_failed(envelope.event, "TRANSIENT_STORE_FAILURE")
            logger.error(
                "webhook.event.store_failure", event_type=envelope.event, error=str(exc), exc_info=True
            )
            raise TransientStoreError("Failed to apply billing event", envelope.event) from exc

        self.metrics.record_webhook_outcome(envelope.event, result.outcome.value)
        return result

    async def _dispatch(
        self, event_type: WebhookEventType, envelope: WebhookEnvelope
    ) -> WebhookResult:
        match event_type:
            case WebhookEventType.SUBSCRIPTION_ACTIVATED:
                return await self._on_activated(envelope)
            case WebhookEventType.SUBSCRIPTION_CHARGED:
                return await self._on_charged(envelope)
            case WebhookEventType.SUBSCRIPTION_COMPLETED:
                return await self._on_completed(envelope)
            case WebhookEventType.SUBSCRIPTION_CANCELLED:
                return await self._on_cancelled(envelope)
            case WebhookEventType.SUBSCRIPTION_PAUSED | WebhookEventType.SUBSCRIPTION_RESUMED:
                return self._record_only(envelope, envelope.subscription().id)
            case WebhookEventType.PAYMENT_AUTHORIZED | WebhookEventType.PAYMENT_CAPTURED:
                return self._record_only(envelope, envelope.payment().id)
            case WebhookEventType.INVOICE_PAID:
                invoice = envelope.raw_entity("invoice") or {}
                return self._record_only(envelope, str(invoice.get("id", "")) or None)
            case WebhookEventType.PAYMENT_FAILED:
                return await self._on_payment_failed(envelope)
            case _:
                assert_never(event_type)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ignored(self, envelope: WebhookEnvelope, detail: str, **context: object) -> WebhookResult:
        logger.warning(f"webhook.{envelope.event}.ignored", detail=detail, **context)
        return WebhookResult(envelope.event, WebhookOutcome.IGNORED, detail=detail)

    def _record_only(self, envelope: WebhookEnvelope, reference: str | None) -> WebhookResult:
        """Acknowledge an event that has no transition defined."""
        self.metrics.record_subscription_event(envelope.event)
        logger.info(f"webhook.{envelope.event}.recorded", reference=reference)
        return WebhookResult(envelope.event, WebhookOutcome.PROCESSED, detail="recorded")

    async def _load_subscription(
        self, envelope: WebhookEnvelope, external_ref: str | None
    ) -> Subscription | None:
        if not external_ref:
            return None
        subscription = await self.ledger.get_by_external_ref(external_ref, for_update=True)
        if subscription is None:
            logger.warning(
                "webhook.subscription.unknown", event_type=envelope.event, external_ref=external_ref
            )
        return subscription

    async def _duplicate(self, envelope: WebhookEnvelope, payment: Payment) -> WebhookResult:
        invoice = await self.ledger.get_invoice_for_payment(payment.id)
        logger.info(
            f"webhook.{envelope.event}.duplicate",
            external_payment_ref=payment.external_payment_ref,
        )
        return WebhookResult(
            envelope.event,
            WebhookOutcome.DUPLICATE,
            subscription_id=payment.subscription_id,
            payment_id=payment.id,
            invoice_number=invoice.invoice_number if invoice else None,
        )

    def _apply_period(self, subscription: Subscription, start: int | None, end: int | None) -> None:
        period_start = from_unix(start)
        period_end = from_unix(end)
        if period_start is not None:
            subscription.current_period_start = period_start
        if period_end is not None:
            subscription.current_period_end = period_end

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _on_activated(self, envelope: WebhookEnvelope) -> WebhookResult:
        entity = envelope.subscription()
        subscription = await self._load_subscription(envelope, entity.id)
        if subscription is None:
            return self._ignored(envelope, "unknown_subscription", external_ref=entity.id)
        if subscription.status in TERMINAL_STATUSES:
            return self._ignored(
                envelope, "terminal_subscription", subscription_id=subscription.id
            )

        self.ledger.transition(subscription, SubscriptionStatus.ACTIVE, reason=envelope.event)
        self._apply_period(subscription, entity.current_start, entity.current_end)

        tenant = await self.ledger.tenants.get_tenant(subscription.tenant_id)
        if tenant is not None:
            await self.ledger.tenants.transition(tenant, TenantStatus.ACTIVE, reason=envelope.event)

        await self.db.commit()
        logger.info(
            "webhook.activated.processed",
            subscription_id=subscription.id,
            tenant_id=subscription.tenant_id,
        )
        return WebhookResult(
            envelope.event, WebhookOutcome.PROCESSED, subscription_id=subscription.id
        )

    async def _on_charged(self, envelope: WebhookEnvelope) -> WebhookResult:
        payment_entity = envelope.payment()
        subscription_entity = envelope.subscription()

        existing = await self.ledger.get_payment_by_external_ref(payment_entity.id)
        if existing is not None:
            return await self._duplicate(envelope, existing)

        subscription = await self._load_subscription(envelope, subscription_entity.id)
        if subscription is None:
            return self._ignored(
                envelope, "unknown_subscription", external_ref=subscription_entity.id
            )

        now = self._now()
        currency = (payment_entity.currency or self.default_currency).upper()
        amount = to_major_units(payment_entity.amount, self.minor_units)
        paid_at = from_unix(payment_entity.created_at) or now

        try:
            payment = Payment(
                id=generate_id(),
                subscription_id=subscription.id,
                amount=amount,
                currency=currency,
                status=PaymentStatus.SUCCESS,
                external_payment_ref=payment_entity.id,
                external_order_ref=payment_entity.order_id,
                payment_method=payment_entity.method,
                occurred_at=paid_at,
                raw_event=envelope.raw_entity("payment"),
            )
            self.db.add(payment)
            await self.db.flush()

            invoice_number = await self.allocator.allocate(now)
            # Invoice covers the period held before this charge
            billed_start = subscription.current_period_start
            billed_end = subscription.current_period_end
            self._apply_period(
                subscription, subscription_entity.current_start, subscription_entity.current_end
            )
            invoice = Invoice(
                subscription_id=subscription.id,
                payment_id=payment.id,
                invoice_number=invoice_number,
                amount=amount,
                tax=to_major_units(payment_entity.tax, self.minor_units),
                total=amount,
                currency=currency,
                status=InvoiceStatus.PAID,
                billing_period_start=billed_start or subscription.current_period_start,
                billing_period_end=billed_end or subscription.current_period_end,
                due_date=now,
                paid_at=paid_at,
                created_at=now,
            )
            self.db.add(invoice)

            if subscription.status in TERMINAL_STATUSES:
                logger.warning(
                    "webhook.charged.terminal_subscription",
                    subscription_id=subscription.id,
                    status=subscription.status.value,
                )
            else:
                self.ledger.transition(
                    subscription, SubscriptionStatus.ACTIVE, reason=envelope.event
                )

            await self.db.commit()
        except IntegrityError:
            # A concurrent delivery of the same payment won the insert
            await self.db.rollback()
            stored = await self.ledger.get_payment_by_external_ref(payment_entity.id)
            if stored is None:
                raise
            return await self._duplicate(envelope, stored)

        self.metrics.record_payment_succeeded(subscription.tenant_id, currency)
        self.metrics.record_invoice_created(subscription.tenant_id, currency)
        logger.info(
            "webhook.charged.processed",
            subscription_id=subscription.id,
            tenant_id=subscription.tenant_id,
            external_payment_ref=payment_entity.id,
            invoice_number=invoice_number,
            amount=str(amount),
            currency=currency,
        )
        return WebhookResult(
            envelope.event,
            WebhookOutcome.PROCESSED,
            subscription_id=subscription.id,
            payment_id=payment.id,
            invoice_number=invoice_number,
        )

    async def _on_completed(self, envelope: WebhookEnvelope) -> WebhookResult:
        entity = envelope.subscription()
        subscription = await self._load_subscription(envelope, entity.id)
        if subscription is None:
            return self._ignored(envelope, "unknown_subscription", external_ref=entity.id)

        self.ledger.transition(subscription, SubscriptionStatus.EXPIRED, reason=envelope.event)
        await self.db.commit()
        logger.info("webhook.completed.processed", subscription_id=subscription.id)
        return WebhookResult(
            envelope.event, WebhookOutcome.PROCESSED, subscription_id=subscription.id
        )

    async def _on_cancelled(self, envelope: WebhookEnvelope) -> WebhookResult:
        entity = envelope.subscription()
        subscription = await self._load_subscription(envelope, entity.id)
        if subscription is None:
            return self._ignored(envelope, "unknown_subscription", external_ref=entity.id)
        if subscription.status == SubscriptionStatus.EXPIRED:
            return self._ignored(
                envelope, "terminal_subscription", subscription_id=subscription.id
            )

        self.ledger.transition(subscription, SubscriptionStatus.CANCELLED, reason=envelope.event)
        if subscription.canceled_at is None:
            subscription.canceled_at = from_unix(entity.ended_at) or self._now()

        tenant = await self.ledger.tenants.get_tenant(subscription.tenant_id)
        if tenant is not None:
            await self.ledger.tenants.transition(
                tenant, TenantStatus.CANCELLED, reason=envelope.event
            )

        await self.db.commit()
        logger.info(
            "webhook.cancelled.processed",
            subscription_id=subscription.id,
            tenant_id=subscription.tenant_id,
        )
        return WebhookResult(
            envelope.event, WebhookOutcome.PROCESSED, subscription_id=subscription.id
        )

    async def _on_payment_failed(self, envelope: WebhookEnvelope) -> WebhookResult:
        payment_entity = envelope.payment()

        existing = await self.ledger.get_payment_by_external_ref(payment_entity.id)
        if existing is not None:
            return await self._duplicate(envelope, existing)

        subscription = await self._load_subscription(envelope, payment_entity.subscription_id)
        if subscription is None:
            return self._ignored(
                envelope, "unknown_subscription", external_ref=payment_entity.subscription_id
            )

        currency = (payment_entity.currency or self.default_currency).upper()
        try:
            payment = Payment(
                id=generate_id(),
                subscription_id=subscription.id,
                amount=to_major_units(payment_entity.amount, self.minor_units),
                currency=currency,
                status=PaymentStatus.FAILED,
                external_payment_ref=payment_entity.id,
                external_order_ref=payment_entity.order_id,
                payment_method=payment_entity.method,
                failure_reason=payment_entity.error_description,
                occurred_at=from_unix(payment_entity.created_at) or self._now(),
                raw_event=envelope.raw_entity("payment"),
            )
            self.db.add(payment)

            # Tenant status is left alone; grace-period handling is external
            if subscription.status in CURRENT_SUBSCRIPTION_STATUSES:
                self.ledger.transition(
                    subscription, SubscriptionStatus.PAST_DUE, reason=envelope.event
                )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            stored = await self.ledger.get_payment_by_external_ref(payment_entity.id)
            if stored is None:
                raise
            return await self._duplicate(envelope, stored)

        self.metrics.record_payment_failed(subscription.tenant_id, currency)
        logger.warning(
            "webhook.payment_failed.processed",
            subscription_id=subscription.id,
            tenant_id=subscription.tenant_id,
            external_payment_ref=payment_entity.id,
            failure_reason=payment_entity.error_description,
        )
        return WebhookResult(
            envelope.event,
            WebhookOutcome.PROCESSED,
            subscription_id=subscription.id,
            payment_id=payment.id,
        )
