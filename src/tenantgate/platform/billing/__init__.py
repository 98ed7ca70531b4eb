"""
Billing module: subscription ledger, invoice numbering and the webhook-driven
subscription state machine.
"""

from tenantgate.platform.billing.enums import (
    Feature,
    InvoiceStatus,
    PaymentStatus,
    PlanInterval,
    SubscriptionStatus,
    UsageResource,
)
from tenantgate.platform.billing.models import Invoice, InvoiceSequence, Payment, Plan, Subscription

__all__ = [
    "Feature",
    "Invoice",
    "InvoiceSequence",
    "InvoiceStatus",
    "Payment",
    "PaymentStatus",
    "Plan",
    "PlanInterval",
    "Subscription",
    "SubscriptionStatus",
    "UsageResource",
]
