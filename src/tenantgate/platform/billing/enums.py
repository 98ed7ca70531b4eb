"""
Billing enums shared by the ledger, the state machine and the authorization gates.
"""

from enum import Enum


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status."""

    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# A tenant has at most one subscription in one of these states
CURRENT_SUBSCRIPTION_STATUSES: tuple[SubscriptionStatus, ...] = (
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIAL,
    SubscriptionStatus.PAST_DUE,
)

# States that unlock plan features and quotas
ENTITLED_SUBSCRIPTION_STATUSES: tuple[SubscriptionStatus, ...] = (
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIAL,
)


class PaymentStatus(str, Enum):
    """Outcome of a processor payment event."""

    SUCCESS = "success"
    FAILED = "failed"


class InvoiceStatus(str, Enum):
    """Invoice status."""

    DRAFT = "draft"
    OPEN = "open"
    PAID = "paid"
    VOID = "void"


class PlanInterval(str, Enum):
    """Billing interval of a plan."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class Feature(str, Enum):
    """Plan capabilities a route can be gated on."""

    FINANCE = "finance"
    COMPLIANCE = "compliance"
    API = "api"
    BRANDING = "branding"


class UsageResource(str, Enum):
    """Countable resources with a per-plan ceiling."""

    PROJECTS = "projects"
    USERS = "users"
    BENEFICIARIES = "beneficiaries"
    STORAGE = "storage"
