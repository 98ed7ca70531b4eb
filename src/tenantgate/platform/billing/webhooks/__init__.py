"""Payment-processor webhook handling."""

from tenantgate.platform.billing.webhooks.events import (
    WebhookEventType,
    WebhookOutcome,
    WebhookResult,
)
from tenantgate.platform.billing.webhooks.signature import compute_signature, verify_signature
from tenantgate.platform.billing.webhooks.state_machine import SubscriptionStateMachine

__all__ = [
    "SubscriptionStateMachine",
    "WebhookEventType",
    "WebhookOutcome",
    "WebhookResult",
    "compute_signature",
    "verify_signature",
]
