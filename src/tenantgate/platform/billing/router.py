"""
Billing API router.

Only the processor webhook is exposed. It takes no bearer credential and no
tenant context; the HMAC signature is its authentication.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.platform.billing.webhooks import SubscriptionStateMachine
from tenantgate.platform.db import get_async_session
from tenantgate.platform.settings import get_settings

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


@router.post("/webhooks")
async def receive_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_session),
) -> dict[str, Any]:
    """Apply one payment-processor event.

    Returns 200 for processed, duplicate and ignored events; 400 when the
    signature or body is invalid; 503 when the delivery should be retried.
    """
    raw_payload = await request.body()
    signature = request.headers.get(get_settings().billing.webhook_signature_header)

    machine = SubscriptionStateMachine(db)
    result = await machine.apply_event(raw_payload, signature)

    logger.info(
        "webhook.delivery.accepted",
        event_type=result.event_type,
        outcome=result.outcome.value,
    )
    return result.to_dict()
