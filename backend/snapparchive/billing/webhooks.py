"""Stripe webhook event handlers — apply subscription lifecycle events.

Each handler re-reads the row it is about to change (under a row lock) and
decides from what it finds, because Stripe does not guarantee delivery
order. Timestamps come from the event itself, never from the wall clock, so
a redelivered event leaves the row exactly as the first delivery did.

Handlers return the notifications to send; the caller sends them only after
the transaction has committed.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from snapparchive.billing.events import (
    BillingEvent,
    CheckoutCompleted,
    InvoicePaid,
    InvoicePaymentFailed,
    SubscriptionChanged,
    SubscriptionDeleted,
    snapshot_subscription,
)
from snapparchive.billing.lifecycle import compute_grace_anchor, map_provider_status
from snapparchive.billing.plans import get_plan, get_plan_by_price_id, is_paid_plan, resolve_plan
from snapparchive.billing.stripe_client import get_subscription
from snapparchive.models.provider_event import ProviderEvent
from snapparchive.models.subscription import Subscription, SubscriptionStatus
from snapparchive.services.notifications import Notification, format_amount
from snapparchive.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)

Handler = Callable[[SubscriptionStore, BillingEvent], Awaitable[list[Notification]]]


def _parse_account_id(value: str | None) -> uuid.UUID | None:
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        logger.warning("Ignoring malformed account_id %r in Stripe metadata", value)
        return None


def _is_stale(subscription: Subscription, stripe_subscription_id: str) -> bool:
    """True when the event concerns a different Stripe subscription than the one on record."""
    return (
        subscription.stripe_subscription_id is not None
        and subscription.stripe_subscription_id != stripe_subscription_id
    )


async def handle_checkout_completed(store: SubscriptionStore, event: CheckoutCompleted) -> list[Notification]:
    """Handle checkout.session.completed — create or refresh the account's active record."""
    if not event.subscription_id:
        logger.info("Checkout session %s has no subscription (one-time?), skipping", event.session_id)
        return []

    account_id = _parse_account_id(event.account_id)
    if account_id is None and event.customer_id:
        by_customer = await store.get_by_provider_customer_ref(event.customer_id)
        account_id = by_customer.account_id if by_customer else None
    if account_id is None:
        logger.error(
            "Checkout session %s carries no account_id and customer %s is unknown, skipping",
            event.session_id,
            event.customer_id,
        )
        return []

    # Fetch full subscription from Stripe to get price, trial and period info
    snapshot = snapshot_subscription(await get_subscription(event.subscription_id))
    plan = resolve_plan(snapshot.price_id)

    existing = await store.get_by_account(account_id, for_update=True)
    # One trial email per Checkout session, even when customer.subscription.created
    # attached the subscription first.
    first_delivery = existing is None or existing.stripe_checkout_session_id != event.session_id
    fresh = (
        existing is None
        or existing.status == SubscriptionStatus.CANCELLED
        or existing.stripe_subscription_id != event.subscription_id
    )

    fields = {
        "stripe_customer_id": event.customer_id or snapshot.customer_id,
        "stripe_subscription_id": event.subscription_id,
        "stripe_checkout_session_id": event.session_id,
        "plan": plan,
        "current_period_start": snapshot.period_start,
        "current_period_end": snapshot.period_end,
    }
    if fresh:
        fields.update(
            status=SubscriptionStatus.ACTIVE.value,
            auto_renew=True,
            auto_renew_off_at=None,
            cancel_at_period_end=False,
            trial_ends_at=snapshot.trial_end,
            cancelled_at=None,
            payment_failed_at=None,
            payment_failure_reason=None,
        )
    elif existing.trial_ends_at is None and snapshot.trial_end is not None:
        fields["trial_ends_at"] = snapshot.trial_end

    await store.upsert(account_id, **fields)

    if not first_delivery:
        logger.info("Checkout %s already applied to account %s; refreshed period", event.session_id, account_id)
        return []

    logger.info(
        "Checkout completed: subscription %s activated on plan %s for account %s",
        event.subscription_id,
        plan,
        account_id,
    )
    return [
        Notification(
            template="trial_started",
            to=event.customer_email,
            context={"plan_name": get_plan(plan).display_name},
        )
    ]


async def handle_subscription_changed(
    store: SubscriptionStore, event: SubscriptionChanged
) -> list[Notification]:
    """Handle customer.subscription.created/updated — sync plan, status, period and renewal intent."""
    snapshot = event.subscription
    subscription = await store.get_by_provider_customer_ref(snapshot.customer_id, for_update=True)
    if subscription is None:
        logger.warning(
            "No local subscription found for Stripe customer %s (%s %s)",
            snapshot.customer_id,
            event.event_type,
            snapshot.subscription_id,
        )
        return []

    if subscription.status == SubscriptionStatus.CANCELLED:
        logger.info(
            "Ignoring %s for cancelled record of account %s", event.event_type, subscription.account_id
        )
        return []
    if _is_stale(subscription, snapshot.subscription_id):
        logger.info(
            "Ignoring %s for superseded Stripe subscription %s (current %s)",
            event.event_type,
            snapshot.subscription_id,
            subscription.stripe_subscription_id,
        )
        return []

    plan = get_plan_by_price_id(snapshot.price_id) if snapshot.price_id else None
    if plan is None:
        plan = subscription.plan if is_paid_plan(subscription.plan) else resolve_plan(snapshot.price_id)

    status = map_provider_status(snapshot.provider_status, subscription.status)
    auto_renew = not snapshot.cancel_at_period_end

    fields = {
        "stripe_subscription_id": snapshot.subscription_id,
        "plan": plan,
        "status": status,
        "cancel_at_period_end": snapshot.cancel_at_period_end,
        "auto_renew": auto_renew,
    }
    if snapshot.period_start is not None:
        fields["current_period_start"] = snapshot.period_start
    if snapshot.period_end is not None:
        fields["current_period_end"] = snapshot.period_end
    if subscription.trial_ends_at is None and snapshot.trial_end is not None:
        fields["trial_ends_at"] = snapshot.trial_end

    if status == SubscriptionStatus.CANCELLED:
        fields.update(
            auto_renew=False,
            auto_renew_off_at=None,
            cancelled_at=subscription.cancelled_at or snapshot.canceled_at or event.occurred_at,
        )
    elif auto_renew:
        fields["auto_renew_off_at"] = None

    await store.update(subscription.account_id, **fields)

    # Renewal turned off on Stripe's side (e.g. via the billing portal): start the grace clock.
    if status != SubscriptionStatus.CANCELLED and not auto_renew and subscription.auto_renew_off_at is None:
        anchor = compute_grace_anchor(subscription, event.occurred_at)
        await store.update(subscription.account_id, auto_renew_off_at=anchor)

    logger.info(
        "Subscription updated: %s -> plan=%s, status=%s, auto_renew=%s",
        snapshot.subscription_id,
        plan,
        status,
        auto_renew,
    )
    return []


async def handle_subscription_deleted(
    store: SubscriptionStore, event: SubscriptionDeleted
) -> list[Notification]:
    """Handle customer.subscription.deleted — terminal cancellation."""
    snapshot = event.subscription
    subscription = await store.get_by_provider_customer_ref(snapshot.customer_id, for_update=True)
    if subscription is None:
        logger.warning(
            "No local subscription found for Stripe customer %s (delete event %s)",
            snapshot.customer_id,
            snapshot.subscription_id,
        )
        return []
    if _is_stale(subscription, snapshot.subscription_id):
        logger.info(
            "Ignoring deletion of superseded Stripe subscription %s (current %s)",
            snapshot.subscription_id,
            subscription.stripe_subscription_id,
        )
        return []

    await store.update(
        subscription.account_id,
        status=SubscriptionStatus.CANCELLED.value,
        auto_renew=False,
        auto_renew_off_at=None,
        cancelled_at=subscription.cancelled_at or event.occurred_at,
    )
    logger.info(
        "Subscription deleted: %s marked cancelled for account %s",
        snapshot.subscription_id,
        subscription.account_id,
    )
    return []


async def handle_invoice_paid(store: SubscriptionStore, event: InvoicePaid) -> list[Notification]:
    """Handle invoice.paid — confirm active status and record the payment."""
    subscription = await store.get_by_provider_customer_ref(event.customer_id, for_update=True)
    if subscription is None:
        logger.warning(
            "No local subscription found for Stripe customer %s (invoice %s)",
            event.customer_id,
            event.invoice_id,
        )
        return []

    fields = {
        "last_payment_at": event.occurred_at,
        "last_payment_amount_cents": event.amount_paid_cents,
        "last_payment_currency": event.currency,
        "payment_failed_at": None,
        "payment_failure_reason": None,
    }
    if subscription.status == SubscriptionStatus.CANCELLED:
        logger.warning(
            "Invoice %s paid for cancelled record of account %s; recording payment only",
            event.invoice_id,
            subscription.account_id,
        )
    else:
        fields["status"] = SubscriptionStatus.ACTIVE.value

    await store.update(subscription.account_id, **fields)
    logger.info(
        "Invoice paid: %s for account %s (%s)",
        event.invoice_id,
        subscription.account_id,
        format_amount(event.amount_paid_cents, event.currency),
    )

    if event.amount_paid_cents <= 0:
        return []
    return [
        Notification(
            template="payment_succeeded",
            to=event.customer_email,
            context={
                "amount": format_amount(event.amount_paid_cents, event.currency),
                "invoice_id": event.invoice_id,
            },
        )
    ]


async def handle_invoice_payment_failed(
    store: SubscriptionStore, event: InvoicePaymentFailed
) -> list[Notification]:
    """Handle invoice.payment_failed — record the failure; status is left to subscription events."""
    subscription = await store.get_by_provider_customer_ref(event.customer_id, for_update=True)
    if subscription is None:
        logger.warning(
            "No local subscription found for Stripe customer %s (payment failed, invoice %s)",
            event.customer_id,
            event.invoice_id,
        )
        return []

    await store.update(
        subscription.account_id,
        payment_failed_at=event.occurred_at,
        payment_failure_reason=event.failure_reason[:500],
    )
    logger.info(
        "Payment failed: invoice %s for account %s (%s)",
        event.invoice_id,
        subscription.account_id,
        event.failure_reason,
    )
    return [
        Notification(
            template="payment_failed",
            to=event.customer_email,
            context={"reason": event.failure_reason},
        )
    ]


EVENT_HANDLERS: dict[type, Handler] = {
    CheckoutCompleted: handle_checkout_completed,  # type: ignore[dict-item]
    SubscriptionChanged: handle_subscription_changed,  # type: ignore[dict-item]
    SubscriptionDeleted: handle_subscription_deleted,  # type: ignore[dict-item]
    InvoicePaid: handle_invoice_paid,  # type: ignore[dict-item]
    InvoicePaymentFailed: handle_invoice_payment_failed,  # type: ignore[dict-item]
}


async def apply_event(store: SubscriptionStore, event: BillingEvent) -> list[Notification] | None:
    """Dispatch a decoded event. Returns None for event kinds we do not handle."""
    handler = EVENT_HANDLERS.get(type(event))
    if handler is None:
        return None
    return await handler(store, event)


async def is_duplicate_event(db: AsyncSession, event_id: str) -> bool:
    return await db.get(ProviderEvent, event_id) is not None


async def record_event(db: AsyncSession, event: BillingEvent) -> None:
    """Add the event to the processed ledger (committed with the handler's changes)."""
    db.add(
        ProviderEvent(
            event_id=event.event_id,
            event_type=event.event_type,
            provider_created_at=event.occurred_at,
        )
    )
    await db.flush()
