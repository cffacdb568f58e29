"""Stripe billing webhook.

The signature is verified (400 on mismatch) before any event handling runs.
Ledger failures after verification answer 500 so Stripe redelivers.
"""

import structlog
from fastapi import APIRouter, Depends

from adforge.api.dependencies import get_billing_consumer, validate_stripe_signature
from adforge.services.billing.consumer import BillingEventConsumer

logger = structlog.get_logger()
router = APIRouter()


@router.post("/stripe")
async def stripe_webhook(
    event: dict = Depends(validate_stripe_signature),
    consumer: BillingEventConsumer = Depends(get_billing_consumer),
) -> dict:
    """Receive Stripe events.

    Returns:
        {"received": true} for every verified event, handled or ignored
    """
    logger.info("webhook.received", event_id=event.get("id"), event_type=event.get("type"))
    await consumer.handle(event)
    return {"received": True}
