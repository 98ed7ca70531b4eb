"""
Subscription ledger models.

Plans are read-only reference data. Subscriptions move only through the
webhook state machine and the lapse sweep. Payments are append-only and
``external_payment_ref`` is the idempotency key for processor retries.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, assert_never

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from tenantgate.platform.billing.enums import (
    CURRENT_SUBSCRIPTION_STATUSES,
    Feature,
    InvoiceStatus,
    PaymentStatus,
    PlanInterval,
    SubscriptionStatus,
    UsageResource,
)
from tenantgate.platform.db import Base, TimestampMixin, generate_id


class Plan(Base, TimestampMixin):
    """Subscription plan with its limits and feature flags."""

    __tablename__ = "plans"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="INR", nullable=False)
    interval: Mapped[PlanInterval] = mapped_column(
        SQLEnum(PlanInterval, name="plan_interval"), default=PlanInterval.MONTHLY, nullable=False
    )
    trial_days: Mapped[int] = mapped_column(Integer, default=14, nullable=False)
    external_plan_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Limits
    max_projects: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_users: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_beneficiaries: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_storage: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Feature flags
    finance_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    compliance_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    api_access: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    custom_branding: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def has_feature(self, feature: Feature) -> bool:
        match feature:
            case Feature.FINANCE:
                return self.finance_enabled
            case Feature.COMPLIANCE:
                return self.compliance_enabled
            case Feature.API:
                return self.api_access
            case Feature.BRANDING:
                return self.custom_branding
            case _:
                assert_never(feature)

    def limit_for(self, resource: UsageResource) -> int:
        match resource:
            case UsageResource.PROJECTS:
                return self.max_projects
            case UsageResource.USERS:
                return self.max_users
            case UsageResource.BENEFICIARIES:
                return self.max_beneficiaries
            case UsageResource.STORAGE:
                return self.max_storage
            case _:
                assert_never(resource)

    def __repr__(self) -> str:
        return f"<Plan(name={self.name}, price={self.price})>"


class Subscription(Base, TimestampMixin):
    """A tenant's subscription to a plan."""

    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    tenant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tenants.id"), nullable=False, index=True
    )
    plan_id: Mapped[str] = mapped_column(String(36), ForeignKey("plans.id"), nullable=False)
    status: Mapped[SubscriptionStatus] = mapped_column(
        SQLEnum(SubscriptionStatus, name="subscription_status"),
        default=SubscriptionStatus.TRIAL,
        nullable=False,
        index=True,
    )

    external_subscription_ref: Mapped[str | None] = mapped_column(
        String(100), unique=True, nullable=True
    )
    external_customer_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)

    current_period_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    current_period_end: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_current(self) -> bool:
        return self.status in CURRENT_SUBSCRIPTION_STATUSES

    def __repr__(self) -> str:
        return f"<Subscription(id={self.id}, tenant_id={self.tenant_id}, status={self.status})>"


class Payment(Base):
    """One processed payment event. Rows are never updated."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    subscription_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("subscriptions.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, name="payment_status"), nullable=False
    )

    # Idempotency key: the processor's payment id
    external_payment_ref: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    external_order_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    raw_event: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Payment(ref={self.external_payment_ref}, status={self.status})>"


class Invoice(Base):
    """Invoice issued for a successful charge."""

    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    subscription_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("subscriptions.id"), nullable=False, index=True
    )
    payment_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("payments.id"), unique=True, nullable=True
    )
    invoice_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[InvoiceStatus] = mapped_column(
        SQLEnum(InvoiceStatus, name="invoice_status"), nullable=False
    )

    billing_period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    billing_period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False, index=True
    )

    def __repr__(self) -> str:
        return f"<Invoice(number={self.invoice_number}, status={self.status})>"


class InvoiceSequence(Base):
    """Monthly invoice counter, locked by the charge transaction that consumes it."""

    __tablename__ = "invoice_sequences"

    period: Mapped[str] = mapped_column(String(6), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
