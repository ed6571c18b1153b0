"""Stripe webhook endpoint — receives and processes Stripe events."""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from snapparchive.api.deps import get_notifier, get_session_factory
from snapparchive.billing.events import EventDecodeError, UnrecognizedEvent, decode_event
from snapparchive.billing.stripe_client import construct_webhook_event
from snapparchive.billing.webhooks import apply_event, is_duplicate_event, record_event
from snapparchive.services.notifications import EmailNotifier
from snapparchive.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    notifier: EmailNotifier = Depends(get_notifier),
) -> dict[str, str]:
    """Receive and process Stripe webhook events."""
    # 1. Read raw body (MUST be raw bytes for signature verification)
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    # 2. Verify signature
    try:
        raw_event = construct_webhook_event(payload, sig_header)
    except stripe.SignatureVerificationError as e:
        logger.warning("Webhook signature verification failed")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        ) from e
    except ValueError as e:
        logger.warning("Invalid webhook payload")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        ) from e

    # 3. Decode into a billing event
    try:
        event = decode_event(raw_event)
    except EventDecodeError as e:
        logger.warning("Malformed %s event %s: %s", raw_event.type, raw_event.id, e)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Malformed event",
        ) from e

    if isinstance(event, UnrecognizedEvent):
        logger.debug("Unhandled webhook event type: %s", event.event_type)
        return {"status": "ignored"}

    logger.info("Processing webhook event: %s (id=%s)", event.event_type, event.event_id)

    # 4. Own DB session (webhook has no auth context); ledger row commits with the changes
    async with session_factory() as db:
        if await is_duplicate_event(db, event.event_id):
            logger.info("Skipping already processed event %s", event.event_id)
            return {"status": "duplicate"}
        try:
            notifications = await apply_event(SubscriptionStore(db), event) or []
            await record_event(db, event)
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.exception("Error processing webhook event %s", event.event_id)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Webhook processing failed",
            ) from e

    # 5. Emails go out only once the changes are durable
    for notification in notifications:
        await notifier.deliver(notification)

    return {"status": "processed"}
