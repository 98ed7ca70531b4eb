"""
Tenantgate Platform - authorization and billing-state core for multi-tenant services.

This package provides:
- Request authorization (identity, tenant scope, RBAC, feature gates, usage quotas)
- Subscription lifecycle driven by signed payment-processor webhooks
- Usage accounting with scheduled snapshot and limit sweeps

Design Principles:
1. Every gate is declared per route and evaluated in a fixed order
2. Tenant scope is an explicit per-request object, never ambient state
3. Billing events are verified before they touch the database
"""

__version__ = "1.0.0"
__author__ = "Tenantgate Team"


def get_version() -> str:
    """Get platform version."""
    return __version__
