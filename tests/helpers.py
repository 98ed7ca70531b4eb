"""Shared test helpers: a static credential verifier and webhook body builders."""

import json
from datetime import UTC, datetime, timedelta
from typing import Any

from tenantgate.platform.auth.core import IdentityClaim
from tenantgate.platform.auth.exceptions import AuthorizationDenied, DenyReason
from tenantgate.platform.auth.models import User
from tenantgate.platform.billing.webhooks.signature import compute_signature

WEBHOOK_SECRET = "test-webhook-secret"
JWT_SECRET = "test-jwt-secret"


class StaticVerifier:
    """Credential verifier that maps fixed tokens to identities."""

    def __init__(self, identities: dict[str, IdentityClaim] | None = None) -> None:
        self.identities = identities or {}

    def register(self, token: str, identity: IdentityClaim) -> None:
        self.identities[token] = identity

    async def verify(self, token: str | None) -> IdentityClaim:
        if not token or token not in self.identities:
            raise AuthorizationDenied(DenyReason.UNAUTHENTICATED, "Unknown test token")
        return self.identities[token]


def identity_for(user: User) -> IdentityClaim:
    return IdentityClaim(
        subject_id=user.id,
        tenant_id=user.tenant_id,
        role_id=user.role_id,
        is_platform_admin=user.is_platform_admin,
        is_active=user.is_active,
    )


def webhook_body(event: str, **payload: Any) -> bytes:
    """Encode a processor webhook body."""
    return json.dumps({"event": event, "payload": payload}).encode("utf-8")


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return compute_signature(body, secret)


def subscription_payload(
    external_ref: str,
    *,
    current_start: int | None = None,
    current_end: int | None = None,
    ended_at: int | None = None,
) -> dict[str, Any]:
    entity: dict[str, Any] = {"id": external_ref, "status": "active"}
    if current_start is not None:
        entity["current_start"] = current_start
    if current_end is not None:
        entity["current_end"] = current_end
    if ended_at is not None:
        entity["ended_at"] = ended_at
    return {"entity": entity}


def payment_payload(
    payment_ref: str,
    *,
    amount: int = 299900,
    currency: str = "INR",
    subscription_ref: str | None = None,
    error_description: str | None = None,
) -> dict[str, Any]:
    entity: dict[str, Any] = {
        "id": payment_ref,
        "amount": amount,
        "currency": currency,
        "method": "card",
        "order_id": f"order_{payment_ref}",
    }
    if subscription_ref is not None:
        entity["subscription_id"] = subscription_ref
    if error_description is not None:
        entity["error_code"] = "BAD_REQUEST_ERROR"
        entity["error_description"] = error_description
    return {"entity": entity}


def period_timestamps(days: int = 30) -> tuple[int, int]:
    start = datetime.now(UTC).replace(microsecond=0)
    end = start + timedelta(days=days)
    return int(start.timestamp()), int(end.timestamp())


def charged_body(subscription_ref: str, payment_ref: str, *, amount: int = 299900) -> bytes:
    start, end = period_timestamps()
    return webhook_body(
        "subscription.charged",
        subscription=subscription_payload(subscription_ref, current_start=start, current_end=end),
        payment=payment_payload(payment_ref, amount=amount, subscription_ref=subscription_ref),
    )


def payment_failed_body(subscription_ref: str, payment_ref: str, reason: str) -> bytes:
    return webhook_body(
        "payment.failed",
        payment=payment_payload(
            payment_ref, subscription_ref=subscription_ref, error_description=reason
        ),
    )
