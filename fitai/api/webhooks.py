"""
Stripe webhook endpoint.

POST /api/webhooks: raw body + stripe-signature header.
"""
import logging

from fastapi import APIRouter, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from fitai.core.errors import SignatureInvalidError
from fitai.features.billing.provider import BillingWebhookError
from fitai.features.billing.service import process_webhook_event

logger = logging.getLogger("fitai")

router = APIRouter(prefix="/api", tags=["webhooks"])


@router.post("/webhooks")
async def handle_webhook(request: Request):
    """
    Verify and reconcile a Stripe event.

    Returns:
        {} for every validly signed event, including ones whose local
        transition failed (those land in the dead-letter log)

    Errors:
        400: Invalid signature/payload, or an unexpected processing error
    """
    # Raw body is required for signature verification
    body = await request.body()
    headers = dict(request.headers)

    try:
        event = await run_in_threadpool(process_webhook_event, headers, body)
    except BillingWebhookError as e:
        logger.error(f"Webhook signature verification failed. {e}")
        raise SignatureInvalidError(str(e))
    except Exception as e:
        logger.error(f"Stripe webhook error: {e}", exc_info=True)
        raise HTTPException(status_code=400, detail=str(e) or "Webhook processing failed.")

    logger.info(f"Webhook processed: {event.event_type}", extra={"event_type": event.event_type})
    return {}
