"""
Webhook event envelope and payload entities.

The processor posts ``{"event": "<type>", "payload": {...}}`` where the
payload carries ``{"subscription": {"entity": {...}}}`` and/or
``{"payment": {"entity": {...}}}``. Amounts are in minor units and
timestamps are unix seconds.
"""

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from tenantgate.platform.billing.exceptions import MalformedEventError


class WebhookEventType(str, Enum):
    """Event types this service reacts to."""

    SUBSCRIPTION_ACTIVATED = "subscription.activated"
    SUBSCRIPTION_CHARGED = "subscription.charged"
    SUBSCRIPTION_COMPLETED = "subscription.completed"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    SUBSCRIPTION_PAUSED = "subscription.paused"
    SUBSCRIPTION_RESUMED = "subscription.resumed"
    PAYMENT_AUTHORIZED = "payment.authorized"
    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"
    INVOICE_PAID = "invoice.paid"

    @classmethod
    def parse(cls, raw: str) -> "WebhookEventType | None":
        """Known event type, or None for anything this service does not handle."""
        try:
            return cls(raw)
        except ValueError:
            return None


class WebhookOutcome(str, Enum):
    """What happened to a verified event."""

    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


class SubscriptionEntity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    status: str | None = None
    current_start: int | None = None
    current_end: int | None = None
    ended_at: int | None = None

    @field_validator("current_start", "current_end", "ended_at")
    @classmethod
    def timestamp_in_range(cls, value: int | None) -> int | None:
        return _checked_timestamp(value)


class PaymentEntity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    amount: int = 0
    currency: str | None = None
    tax: int | None = None
    order_id: str | None = None
    method: str | None = None
    subscription_id: str | None = None
    error_code: str | None = None
    error_description: str | None = None
    created_at: int | None = None

    @field_validator("created_at")
    @classmethod
    def timestamp_in_range(cls, value: int | None) -> int | None:
        return _checked_timestamp(value)


class WebhookEnvelope(BaseModel):
    """Top-level webhook body."""

    model_config = ConfigDict(extra="ignore")

    event: str
    payload: dict[str, Any] = {}

    def _entity(self, name: str) -> dict[str, Any] | None:
        wrapper = self.payload.get(name)
        if not isinstance(wrapper, dict):
            return None
        entity = wrapper.get("entity")
        return entity if isinstance(entity, dict) else None

    def subscription(self) -> SubscriptionEntity:
        return self._parse_entity("subscription", SubscriptionEntity)

    def payment(self) -> PaymentEntity:
        return self._parse_entity("payment", PaymentEntity)

    def raw_entity(self, name: str) -> dict[str, Any] | None:
        return self._entity(name)

    def _parse_entity(self, name: str, model: type[Any]) -> Any:
        entity = self._entity(name)
        if entity is None:
            raise MalformedEventError(f"Event is missing the {name} entity", self.event)
        try:
            return model.model_validate(entity)
        except ValidationError as exc:
            raise MalformedEventError(f"Invalid {name} entity: {exc}", self.event) from exc


def parse_envelope(raw_payload: bytes) -> WebhookEnvelope:
    """Decode a raw webhook body; anything unusable is a MalformedEventError."""
    try:
        data = json.loads(raw_payload)
    except (ValueError, UnicodeDecodeError) as exc:
        raise MalformedEventError("Webhook body is not valid JSON") from exc
    if not isinstance(data, dict):
        raise MalformedEventError("Webhook body is not a JSON object")
    try:
        return WebhookEnvelope.model_validate(data)
    except ValidationError as exc:
        raise MalformedEventError(f"Invalid webhook envelope: {exc}") from exc


def to_major_units(amount: int | None, factor: int) -> Decimal:
    """Convert a processor amount (paise, cents) to major units."""
    return (Decimal(amount or 0) / Decimal(factor)).quantize(Decimal("0.01"))


def _checked_timestamp(value: int | None) -> int | None:
    if value is not None:
        try:
            datetime.fromtimestamp(value, tz=UTC)
        except (ValueError, OverflowError, OSError) as exc:
            raise ValueError(f"timestamp {value} is out of range") from exc
    return value


def from_unix(timestamp: int | None) -> datetime | None:
    if timestamp is None:
        return None
    try:
        return datetime.fromtimestamp(timestamp, tz=UTC)
    except (ValueError, OverflowError, OSError) as exc:
        raise MalformedEventError(f"Timestamp {timestamp} is out of range") from exc


@dataclass
class WebhookResult:
    """Result returned to the processor (and stored for replays)."""

    event_type: str
    outcome: WebhookOutcome
    subscription_id: str | None = None
    payment_id: str | None = None
    invoice_number: str | None = None
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "event": self.event_type,
            "outcome": self.outcome.value,
            "subscription_id": self.subscription_id,
            "payment_id": self.payment_id,
            "invoice_number": self.invoice_number,
            "detail": self.detail,
        }
