"""Subscription service — auto-renew toggle, Stripe customer linking and invoice views."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

import stripe
from sqlalchemy.exc import SQLAlchemyError

from snapparchive.billing.lifecycle import (
    GRACE_PERIOD,
    cancellation_due_at,
    compute_grace_anchor,
    format_date,
    is_trial_open,
    ts_to_naive,
    utcnow,
)
from snapparchive.billing.plans import get_plan, is_paid_plan
from snapparchive.billing.stripe_client import (
    create_customer,
    get_subscription,
    preview_upcoming_invoice,
    set_cancel_at_period_end,
)
from snapparchive.models.subscription import Plan, Subscription, SubscriptionStatus
from snapparchive.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)


class SubscriptionNotFoundError(LookupError):
    """The account has no subscription record."""


class SubscriptionCancelledError(RuntimeError):
    """The record is cancelled; only a new checkout can reactivate the account."""


class SubscriptionUpdateError(RuntimeError):
    """The local write failed after the provider had already been updated."""


@dataclass(frozen=True)
class ToggleResult:
    auto_renew: bool
    auto_renew_off_at: datetime | None
    cancellation_date: datetime | None
    message: str


def _disabled_message(subscription: Subscription, anchor: datetime, now: datetime) -> str:
    grace_days = GRACE_PERIOD.days
    cancel_on = format_date(cancellation_due_at(anchor))
    if is_trial_open(subscription, now):
        return (
            f"Auto-renewal disabled. After your trial ends on {format_date(anchor)}, you will have "
            f"{grace_days} days to re-enable auto-renewal before your subscription is cancelled on {cancel_on}."
        )
    if anchor == subscription.current_period_end:
        plan_name = get_plan(subscription.plan).display_name
        return (
            f"Auto-renewal disabled. Your {plan_name} plan will remain active until {format_date(anchor)}. "
            f"If not re-enabled, your subscription will be cancelled on {cancel_on}."
        )
    return (
        f"Auto-renewal disabled. Your subscription will be cancelled in {grace_days} days "
        f"({cancel_on}) if not re-enabled."
    )


async def toggle_auto_renew(
    store: SubscriptionStore,
    account_id: uuid.UUID,
    auto_renew: bool,
    now: datetime | None = None,
) -> ToggleResult:
    """Turn auto-renewal on or off for an account.

    Stripe is updated first and the local row second. If the local commit
    fails, Stripe's flag is put back to what it was and
    ``SubscriptionUpdateError`` is raised. Stripe errors propagate unchanged
    and nothing is written locally.
    """
    now = now or utcnow()
    subscription = await store.get_by_account(account_id, for_update=True)
    if subscription is None:
        raise SubscriptionNotFoundError(f"No subscription found for account {account_id}")
    if subscription.status == SubscriptionStatus.CANCELLED:
        raise SubscriptionCancelledError(f"Subscription for account {account_id} is cancelled")

    previous_cancel_flag = subscription.cancel_at_period_end

    if auto_renew:
        anchor = None
        message = "Auto-renewal enabled. Your subscription will continue automatically."
    else:
        if not subscription.auto_renew and subscription.auto_renew_off_at is not None:
            anchor = subscription.auto_renew_off_at  # already off; keep the original deadline
        else:
            anchor = compute_grace_anchor(subscription, now)
            if anchor == now:
                logger.warning(
                    "Account %s disabled auto-renew with no open trial or period; anchoring grace at now",
                    account_id,
                )
        message = _disabled_message(subscription, anchor, now)

    stripe_subscription_id = subscription.stripe_subscription_id
    if stripe_subscription_id:
        await set_cancel_at_period_end(stripe_subscription_id, not auto_renew)

    try:
        await store.update(
            account_id,
            auto_renew=auto_renew,
            cancel_at_period_end=not auto_renew,
            auto_renew_off_at=anchor,
        )
        await store.commit()
    except SQLAlchemyError as e:
        logger.exception("Failed to persist auto-renew=%s for account %s", auto_renew, account_id)
        await store.db.rollback()
        if stripe_subscription_id:
            try:
                await set_cancel_at_period_end(stripe_subscription_id, previous_cancel_flag)
            except stripe.StripeError:
                logger.exception(
                    "Could not restore cancel_at_period_end=%s on %s; Stripe and the database now disagree",
                    previous_cancel_flag,
                    stripe_subscription_id,
                )
        raise SubscriptionUpdateError("Failed to update subscription") from e

    logger.info("Account %s set auto_renew=%s (grace anchor %s)", account_id, auto_renew, anchor)
    return ToggleResult(
        auto_renew=auto_renew,
        auto_renew_off_at=anchor,
        cancellation_date=cancellation_due_at(anchor) if anchor else None,
        message=message,
    )


async def ensure_stripe_customer(
    store: SubscriptionStore,
    account_id: uuid.UUID,
    email: str | None,
    name: str | None = None,
) -> str:
    """Ensure the account has a Stripe customer ID. Create one if missing.

    A first-time account gets a trial placeholder record so later webhooks
    can find it by customer ID.
    """
    subscription = await store.get_by_account(account_id, for_update=True)
    if subscription is not None and subscription.stripe_customer_id:
        return subscription.stripe_customer_id

    customer = await create_customer(email=email, name=name, account_id=str(account_id))
    if subscription is None:
        await store.upsert(
            account_id,
            stripe_customer_id=customer.id,
            plan=Plan.TRIAL.value,
            status=SubscriptionStatus.ACTIVE.value,
            auto_renew=True,
        )
    else:
        await store.update(account_id, stripe_customer_id=customer.id)
    logger.info("Linked Stripe customer %s to account %s", customer.id, account_id)
    return customer.id


def has_live_provider_subscription(subscription: Subscription | None) -> bool:
    return (
        subscription is not None
        and subscription.stripe_subscription_id is not None
        and subscription.status != SubscriptionStatus.CANCELLED
        and is_paid_plan(subscription.plan)
    )


def _next_billing_fallback(subscription: Subscription) -> dict | None:
    if subscription.current_period_end is None:
        return None
    return {
        "amount": None,
        "date": subscription.current_period_end,
        "currency": None,
        "status": None,
    }


def _renewal_expected(subscription: Subscription, now: datetime) -> bool:
    return not is_trial_open(subscription, now) and subscription.auto_renew


async def get_upcoming_invoice(subscription: Subscription, now: datetime | None = None) -> dict | None:
    """Preview the next charge, or None while on trial / with auto-renew off."""
    now = now or utcnow()
    if not subscription.stripe_subscription_id or not _renewal_expected(subscription, now):
        return None

    try:
        customer_id = subscription.stripe_customer_id
        if not customer_id:
            stripe_sub = await get_subscription(subscription.stripe_subscription_id)
            customer_id = stripe_sub.customer
        preview = await preview_upcoming_invoice(customer_id, subscription.stripe_subscription_id)
    except stripe.StripeError as e:
        logger.warning(
            "Invoice preview unavailable for %s: %s", subscription.stripe_subscription_id, e
        )
        return _next_billing_fallback(subscription)

    period_end = getattr(preview, "period_end", None)
    return {
        "amount": preview.amount_due / 100 if preview.amount_due is not None else None,
        "date": ts_to_naive(period_end),
        "currency": getattr(preview, "currency", None),
        "status": getattr(preview, "status", None),
    }


async def get_invoice_summary(subscription: Subscription, now: datetime | None = None) -> dict:
    """Latest payment plus the upcoming invoice (falling back to the next billing date)."""
    now = now or utcnow()
    if not subscription.stripe_subscription_id:
        return {"latest_payment": None, "upcoming_invoice": None}

    stripe_sub = await get_subscription(
        subscription.stripe_subscription_id,
        expand=["latest_invoice.payment_intent"],
    )
    latest_invoice = getattr(stripe_sub, "latest_invoice", None)
    payment_intent = getattr(latest_invoice, "payment_intent", None) if latest_invoice else None

    latest_payment = None
    if payment_intent is not None and not isinstance(payment_intent, str):
        created = getattr(payment_intent, "created", None)
        latest_payment = {
            "amount_paid": payment_intent.amount_received / 100,
            "currency": payment_intent.currency,
            "payment_date": ts_to_naive(created),
            "status": payment_intent.status,
        }

    upcoming = None
    if _renewal_expected(subscription, now):
        try:
            preview = await preview_upcoming_invoice(
                subscription.stripe_customer_id or stripe_sub.customer,
                subscription.stripe_subscription_id,
            )
            if preview.amount_due is not None:
                period_end = getattr(preview, "period_end", None)
                upcoming = {
                    "amount": preview.amount_due / 100,
                    "date": ts_to_naive(period_end),
                    "currency": getattr(preview, "currency", None),
                    "status": getattr(preview, "status", None),
                }
        except stripe.StripeError:
            upcoming = None

    if upcoming is None:
        upcoming = _next_billing_fallback(subscription)

    return {"latest_payment": latest_payment, "upcoming_invoice": upcoming}
