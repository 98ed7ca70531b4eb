"""Append-only usage snapshots."""

from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from tenantgate.platform.db import Base, StrictTenantMixin, generate_id


class UsageMetric(Base, StrictTenantMixin):
    """One recorded value of a usage metric for a tenant."""

    __tablename__ = "usage_metrics"
    __table_args__ = (Index("ix_usage_metrics_tenant_recorded", "tenant_id", "recorded_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    metric_type: Mapped[str] = mapped_column(String(50), nullable=False)
    value: Mapped[int] = mapped_column(BigInteger, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )

    def __repr__(self) -> str:
        return f"<UsageMetric(tenant_id={self.tenant_id}, {self.metric_type}={self.value})>"
