"""
Billing system exceptions.

Custom exceptions for webhook processing and the subscription ledger.
Provides error handling with status codes, context, and recovery hints.
Permanent webhook failures map to 400 so the processor stops retrying;
transient store failures map to 503 so it redelivers.
"""

from typing import Any


class BillingError(Exception):
    """
    Base billing system error with enhanced context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "BILLING_ERROR"
        self.status_code = status_code
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
        }


class WebhookError(BillingError):
    """Webhook processing errors.

    The external message is always just "invalid"; the specific cause stays in
    the logs.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "WEBHOOK_INVALID",
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            error_code,
            status_code=400,
            context=context,
            recovery_hint="Do not retry this delivery",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_code": "WEBHOOK_INVALID",
            "message": "invalid",
            "status_code": self.status_code,
            "context": {},
            "recovery_hint": self.recovery_hint,
        }


class InvalidSignatureError(WebhookError):
    """Webhook signature missing or not matching the shared secret."""

    def __init__(self, message: str = "Webhook signature verification failed") -> None:
        super().__init__(message, "INVALID_SIGNATURE")


class MalformedEventError(WebhookError):
    """Webhook body is not a well-formed event envelope."""

    def __init__(self, message: str, event_type: str | None = None) -> None:
        context = {}
        if event_type:
            context["event_type"] = event_type
        super().__init__(message, "MALFORMED_EVENT", context=context)


class TransientStoreError(BillingError):
    """Database failure while applying an event; the delivery may be retried safely."""

    retryable = True

    def __init__(self, message: str, event_type: str | None = None) -> None:
        context = {}
        if event_type:
            context["event_type"] = event_type
        super().__init__(
            message,
            "TRANSIENT_STORE_FAILURE",
            status_code=503,
            context=context,
            recovery_hint="Retry the webhook delivery; processing is idempotent",
        )


class SubscriptionError(BillingError):
    """Subscription-related errors."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message,
            "SUBSCRIPTION_ERROR",
            status_code=400,
            context=context,
            recovery_hint=recovery_hint,
        )


class SubscriptionNotFoundError(SubscriptionError):
    """Subscription not found error."""

    def __init__(
        self,
        message: str,
        subscription_id: str | None = None,
        external_ref: str | None = None,
    ):
        context = {}
        if subscription_id:
            context["subscription_id"] = subscription_id
        if external_ref:
            context["external_subscription_ref"] = external_ref

        super().__init__(
            message,
            context=context,
            recovery_hint="Verify the subscription ID and ensure it exists",
        )
        self.error_code = "SUBSCRIPTION_NOT_FOUND"
        self.status_code = 404


class InvoiceNumberingError(BillingError):
    """Invoice number could not be allocated."""

    retryable = True

    def __init__(self, message: str, period: str | None = None) -> None:
        context = {}
        if period:
            context["period"] = period
        super().__init__(
            message,
            "INVOICE_NUMBERING_ERROR",
            status_code=503,
            context=context,
            recovery_hint="Retry the charge event",
        )
