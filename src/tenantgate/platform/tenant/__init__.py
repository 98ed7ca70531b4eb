"""Tenant directory and request-scoped tenant filtering."""

from tenantgate.platform.tenant.context import TenantScope, TenantScopeError
from tenantgate.platform.tenant.models import Tenant, TenantStatus
from tenantgate.platform.tenant.service import TenantDirectory

__all__ = [
    "Tenant",
    "TenantStatus",
    "TenantDirectory",
    "TenantScope",
    "TenantScopeError",
]
