"""
structlog configuration for the tenantgate API, workers and scripts.

Application code logs through ``structlog.get_logger(__name__)``. Security
decisions and subscription transitions go to the ``audit`` logger via
``log_audit_event`` so they can be routed separately.
"""

import logging
from typing import Any

import structlog
from structlog.types import EventDict, WrappedLogger

from tenantgate.platform.settings import get_settings

AUDIT_LOGGER_NAME = "audit"

# Never written to logs, whatever the call site passes
REDACTED_KEYS = frozenset({"signature", "authorization", "token", "webhook_secret"})


def _add_service_context(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    settings = get_settings()
    event_dict.setdefault("service", settings.app_name)
    event_dict.setdefault("environment", settings.environment.value)
    return event_dict


def _redact_secrets(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def setup_logging() -> None:
    """Configure stdlib logging and structlog from the observability settings."""
    settings = get_settings()
    logging.basicConfig(format="%(message)s", level=settings.observability.log_level.value)

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _add_service_context,
        _redact_secrets,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.observability.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def log_audit_event(
    action: str,
    category: str,
    user_id: str | None = None,
    tenant_id: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    **kwargs: Any,
) -> None:
    """
    Write one audit entry.

    Args:
        action: Dotted event name, e.g. ``authorization.denied``
        category: ``authorization`` or ``billing``
        user_id: Acting user, when known
        tenant_id: Tenant the action concerns
        resource_type: Kind of record touched
        resource_id: Id of that record
        **kwargs: Extra context (reason, previous/new status)
    """
    structlog.get_logger(AUDIT_LOGGER_NAME).info(
        action,
        audit_category=category,
        audit_user_id=user_id,
        audit_tenant_id=tenant_id,
        audit_resource_type=resource_type,
        audit_resource_id=resource_id,
        **kwargs,
    )
