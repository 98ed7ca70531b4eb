"""
Tenant-owned workspace entities counted against plan quotas.
"""

from datetime import date

from sqlalchemy import Date, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tenantgate.platform.db import (
    Base,
    SoftDeleteMixin,
    StrictTenantMixin,
    TimestampMixin,
    generate_id,
)


class Project(Base, TimestampMixin, StrictTenantMixin, SoftDeleteMixin):
    """A tenant's project."""

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)


class Beneficiary(Base, TimestampMixin, StrictTenantMixin, SoftDeleteMixin):
    """A person or household served by a tenant."""

    __tablename__ = "beneficiaries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    project_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    contact: Mapped[str | None] = mapped_column(String(255), nullable=True)
