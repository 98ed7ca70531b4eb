"""
Authorization exceptions.

A denial carries its exact reason for logs and metrics. Callers only ever see
a coarse message: 401 for a missing or bad credential, 403 for everything
else.
"""

from enum import Enum
from typing import Any


class DenyReason(str, Enum):
    """Why the authorization pipeline refused a request."""

    UNAUTHENTICATED = "unauthenticated"
    ACTOR_INACTIVE = "actor_inactive"
    NO_TENANT = "no_tenant"
    TENANT_NOT_FOUND = "tenant_not_found"
    TENANT_INACTIVE = "tenant_inactive"
    TENANT_SUSPENDED = "tenant_suspended"
    TENANT_EXPIRED = "tenant_expired"
    PERMISSION_DENIED = "permission_denied"
    NO_ACTIVE_SUBSCRIPTION = "no_active_subscription"
    FEATURE_NOT_IN_PLAN = "feature_not_in_plan"
    QUOTA_EXCEEDED = "quota_exceeded"


class AuthorizationDenied(Exception):
    """Request refused by the authorization pipeline."""

    def __init__(self, reason: DenyReason, detail: str | None = None, **context: Any) -> None:
        self.reason = reason
        self.detail = detail or reason.value
        self.context = context
        super().__init__(f"{reason.value}: {self.detail}")

    @property
    def status_code(self) -> int:
        return 401 if self.reason == DenyReason.UNAUTHENTICATED else 403

    @property
    def public_message(self) -> str:
        return "Not authenticated" if self.reason == DenyReason.UNAUTHENTICATED else "Forbidden"

    @property
    def headers(self) -> dict[str, str] | None:
        if self.reason == DenyReason.UNAUTHENTICATED:
            return {"WWW-Authenticate": "Bearer"}
        return None

    def to_dict(self) -> dict[str, Any]:
        """External representation; never includes the reason."""
        return {"detail": self.public_message}
