"""Webhook signature verification (HMAC-SHA256 over the raw request body)."""

import hashlib
import hmac

import structlog

from tenantgate.platform.billing.exceptions import InvalidSignatureError

logger = structlog.get_logger(__name__)


def compute_signature(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 digest of ``payload`` keyed with ``secret``."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, signature: str | None, secret: str | None) -> None:
    """Raise InvalidSignatureError unless ``signature`` matches the payload.

    A missing secret fails closed.
    """
    if not secret:
        logger.error("webhook.signature.secret_not_configured")
        raise InvalidSignatureError("Webhook secret not configured")
    if not signature:
        logger.warning("webhook.signature.missing")
        raise InvalidSignatureError("Webhook signature missing")

    expected = compute_signature(payload, secret)
    if not hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("utf-8")):
        logger.warning("webhook.signature.mismatch")
        raise InvalidSignatureError()
