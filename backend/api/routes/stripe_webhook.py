"""
Stripe webhook endpoint.
"""

import json
import logging
import time

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments.stripe_adapter import StripeGateway, StripeWebhookError
from api.dependencies import get_stripe_gateway
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.stripe import WebhookResponse
from infrastructure.database import get_db
from services.stripe_webhooks import StripeWebhookProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stripe", tags=["Stripe"])


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


@router.post("/webhook-enhanced", response_model=WebhookResponse)
@limiter.limit(get_rate_limit("stripe_webhook"))
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    stripe_signature: str | None = Header(None),
):
    """
    Receive Stripe webhook events.

    Responds 400 when the signature or body is invalid, 200 for every
    verified event (``processed`` tells whether it was applied) and 500
    when processing hit an infrastructure fault, so Stripe retries.
    """
    started = time.perf_counter()
    body = await request.body()

    try:
        event = gateway.construct_event(body, stripe_signature)
    except StripeWebhookError as e:
        logger.warning("Rejected Stripe webhook: %s", e)
        return JSONResponse(status_code=400, content={"error": str(e)})

    logger.info(
        "Stripe webhook received: %s (%s)",
        event.event_type,
        event.event_id,
        extra={"event_id": event.event_id, "event_type": event.event_type},
    )

    processor = StripeWebhookProcessor(db, gateway)
    try:
        result = await processor.process(event, payload=json.loads(body))
    except Exception as e:
        await db.rollback()
        logger.error(
            "Webhook handler failed for %s: %s",
            event.event_id,
            e,
            exc_info=True,
            extra={"event_id": event.event_id, "event_type": event.event_type},
        )
        return JSONResponse(
            status_code=500,
            content={"error": "Webhook handler failed", "processingTimeMs": _elapsed_ms(started)},
        )

    return WebhookResponse(
        received=True,
        processed=result.processed,
        processing_time_ms=_elapsed_ms(started),
        error=result.error,
        duplicate=result.duplicate,
    )
