"""
Billing and authorization metrics.

Counters are created through the OpenTelemetry metrics API. Without a
configured SDK the API hands out no-op instruments, so recording is always
safe.
"""

from typing import Any

import structlog
from opentelemetry import metrics
from opentelemetry.metrics import Counter, Meter

from tenantgate.platform.settings import get_settings

logger = structlog.get_logger(__name__)


class BillingMetrics:
    """Billing metrics collector"""

    def __init__(self, meter: Meter | None = None) -> None:
        if meter is None:
            if get_settings().observability.enable_metrics:
                meter = metrics.get_meter("tenantgate.billing")
            else:
                meter = metrics.NoOpMeter("tenantgate.billing")
        self.meter = meter

        # Webhook metrics
        self.webhook_received_counter = self._create_counter(
            name="billing.webhook.received",
            description="Number of webhooks received",
        )
        self.webhook_processed_counter = self._create_counter(
            name="billing.webhook.processed",
            description="Number of webhooks that changed ledger state",
        )
        self.webhook_duplicate_counter = self._create_counter(
            name="billing.webhook.duplicate",
            description="Number of redelivered webhooks answered from stored state",
        )
        self.webhook_ignored_counter = self._create_counter(
            name="billing.webhook.ignored",
            description="Number of webhooks acknowledged without a transition",
        )
        self.webhook_failed_counter = self._create_counter(
            name="billing.webhook.failed",
            description="Number of webhook processing failures",
        )

        # Payment metrics
        self.payment_succeeded_counter = self._create_counter(
            name="billing.payment.succeeded",
            description="Number of successful payments",
        )
        self.payment_failed_counter = self._create_counter(
            name="billing.payment.failed",
            description="Number of failed payments",
        )

        # Invoice metrics
        self.invoice_created_counter = self._create_counter(
            name="billing.invoice.created",
            description="Number of invoices created",
        )

        # Lifecycle metrics
        self.subscription_transition_counter = self._create_counter(
            name="billing.subscription.transition",
            description="Subscription status transitions",
        )
        self.subscription_event_counter = self._create_counter(
            name="billing.subscription.event",
            description="Subscription events recorded without a transition",
        )

        # Authorization metrics
        self.authorization_denied_counter = self._create_counter(
            name="auth.authorization.denied",
            description="Requests denied by the authorization pipeline",
        )

    def _create_counter(self, name: str, description: str, unit: str = "1") -> Counter:
        return self.meter.create_counter(name=name, description=description, unit=unit)

    # Webhook metrics
    def record_webhook_received(self, event_type: str) -> None:
        self.webhook_received_counter.add(1, {"event_type": event_type})

    def record_webhook_outcome(self, event_type: str, outcome: str) -> None:
        """Record the outcome of a verified webhook."""
        attributes = {"event_type": event_type}
        if outcome == "processed":
            self.webhook_processed_counter.add(1, attributes)
        elif outcome == "duplicate":
            self.webhook_duplicate_counter.add(1, attributes)
        else:
            self.webhook_ignored_counter.add(1, attributes)

    def record_webhook_failed(self, event_type: str, error_code: str) -> None:
        self.webhook_failed_counter.add(1, {"event_type": event_type, "error_code": error_code})
        logger.debug("billing.metrics.webhook_failed", event_type=event_type, error_code=error_code)

    # Payment metrics
    def record_payment_succeeded(self, tenant_id: str, currency: str) -> None:
        self.payment_succeeded_counter.add(1, {"tenant_id": tenant_id, "currency": currency})

    def record_payment_failed(self, tenant_id: str, currency: str) -> None:
        self.payment_failed_counter.add(1, {"tenant_id": tenant_id, "currency": currency})

    def record_invoice_created(self, tenant_id: str, currency: str) -> None:
        self.invoice_created_counter.add(1, {"tenant_id": tenant_id, "currency": currency})

    # Lifecycle metrics
    def record_transition(self, previous: str, new: str) -> None:
        self.subscription_transition_counter.add(1, {"from": previous, "to": new})

    def record_subscription_event(self, event_type: str) -> None:
        self.subscription_event_counter.add(1, {"event_type": event_type})

    # Authorization metrics
    def record_authorization_denied(self, reason: str, **attributes: Any) -> None:
        self.authorization_denied_counter.add(1, {"reason": reason, **attributes})


# Global metrics instance
_billing_metrics: BillingMetrics | None = None


def get_billing_metrics() -> BillingMetrics:
    """Get the global billing metrics instance"""
    global _billing_metrics
    if _billing_metrics is None:
        _billing_metrics = BillingMetrics()
    return _billing_metrics


def set_billing_metrics(metrics_instance: BillingMetrics) -> None:
    """Set the global billing metrics instance"""
    global _billing_metrics
    _billing_metrics = metrics_instance
