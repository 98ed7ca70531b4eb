"""
Tenant directory models.

Tenants are never deleted. Their lifecycle status is advanced by the
subscription state machine and read by the authorization pipeline on every
request.
"""

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from tenantgate.platform.db import Base, TimestampMixin, generate_id


class TenantStatus(str, Enum):
    """Tenant lifecycle status."""

    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class Tenant(Base, TimestampMixin):
    """An isolated customer organization."""

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    subdomain: Mapped[str | None] = mapped_column(String(100), unique=True, nullable=True)

    # Activity flag is independent of the lifecycle status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    status: Mapped[TenantStatus] = mapped_column(
        SQLEnum(TenantStatus, name="tenant_status"),
        default=TenantStatus.TRIAL,
        nullable=False,
        index=True,
    )
    trial_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def trial_lapsed(self, now: datetime | None = None) -> bool:
        """Whether the trial window has closed."""
        if self.trial_ends_at is None:
            return False
        now = now or datetime.now(UTC)
        ends_at = self.trial_ends_at
        if ends_at.tzinfo is None:
            ends_at = ends_at.replace(tzinfo=UTC)
        return ends_at <= now

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, name={self.name}, status={self.status})>"
