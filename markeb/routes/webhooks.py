"""Stripe webhooks.

Two endpoints, each verified with its own signing secret: the main account
webhook (booking checkouts, payment links, cancellation fees) and a
dedicated endpoint for cancellation-fee checkouts. Handlers are idempotent,
so a failure is returned to Stripe as an error and the event is retried.
"""

import logging

from fastapi import APIRouter, Depends, Request

from ..config import STRIPE_CANCELLATION_WEBHOOK_SECRET, STRIPE_WEBHOOK_SECRET
from ..domain.bookings.router import get_booking_service
from ..domain.bookings.service import CHECKOUT_CANCELLATION_FEE, BookingService
from ..errors import UpstreamError, ValidationFailed
from ..services.payment_bridge import PaymentBridge

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

CHECKOUT_COMPLETED = "checkout.session.completed"


async def _verified_event(request: Request, secret: str):
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        logger.warning("Webhook received without signature")
        raise ValidationFailed("No signature")
    if not secret:
        logger.error("❌ Webhook secret not configured")
        raise UpstreamError("Webhook configuration error")

    event = PaymentBridge.construct_event(payload, signature, secret)
    logger.info(f"🔔 Webhook verified for event {event['type']} ({event['id']})")
    return event


@router.post("/stripe")
async def stripe_webhook(request: Request, service: BookingService = Depends(get_booking_service)):
    event = await _verified_event(request, STRIPE_WEBHOOK_SECRET)
    if event["type"] != CHECKOUT_COMPLETED:
        return {"received": True, "handled": False}

    result = await service.handle_checkout_completed(event["data"]["object"])
    return {"received": True, "handled": True, "result": result}


@router.post("/stripe/cancellation")
async def stripe_cancellation_webhook(request: Request, service: BookingService = Depends(get_booking_service)):
    event = await _verified_event(request, STRIPE_CANCELLATION_WEBHOOK_SECRET)
    if event["type"] != CHECKOUT_COMPLETED:
        return {"received": True, "handled": False}

    session = event["data"]["object"]
    metadata = session.get("metadata") or {}
    if metadata.get("type") != CHECKOUT_CANCELLATION_FEE:
        logger.info(f"ℹ️ Skipping non-cancellation checkout {session.get('id')}")
        return {"received": True, "handled": False}

    result = await service.handle_checkout_completed(session)
    return {"received": True, "handled": True, "result": result}
