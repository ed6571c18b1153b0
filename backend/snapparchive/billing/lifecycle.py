"""Subscription lifecycle rules shared by the toggle, webhook and sweep paths.

Everything here is pure: callers pass ``now`` explicitly so the rules can be
tested against synthetic timestamps. All datetimes are naive UTC, matching
the database columns.
"""

import enum
from datetime import datetime, timedelta, timezone

from snapparchive.billing.plans import is_paid_plan
from snapparchive.config import settings
from snapparchive.models.subscription import Subscription, SubscriptionStatus

GRACE_PERIOD = timedelta(days=settings.grace_period_days)


class LifecycleState(str, enum.Enum):
    """States derived from status, trial window, paid period and auto-renew."""

    TRIAL_ACTIVE = "trial_active"
    PAID_ACTIVE = "paid_active"
    GRACE_PERIOD = "grace_period"
    LAPSED = "lapsed"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value


# Stripe subscription status -> local status. Anything else keeps the current value.
PROVIDER_STATUS_MAP: dict[str, str] = {
    "canceled": SubscriptionStatus.CANCELLED.value,
    "incomplete_expired": SubscriptionStatus.CANCELLED.value,
    "past_due": SubscriptionStatus.EXPIRED.value,
    "unpaid": SubscriptionStatus.EXPIRED.value,
    "active": SubscriptionStatus.ACTIVE.value,
    "trialing": SubscriptionStatus.ACTIVE.value,
}


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def ts_to_naive(ts: int | None) -> datetime | None:
    """Convert a Stripe Unix timestamp to naive UTC datetime."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def map_provider_status(provider_status: str | None, current: str) -> str:
    if provider_status is None:
        return current
    return PROVIDER_STATUS_MAP.get(provider_status, current)


def is_trial_open(subscription: Subscription, now: datetime) -> bool:
    return subscription.trial_ends_at is not None and now < subscription.trial_ends_at


def is_period_open(subscription: Subscription, now: datetime) -> bool:
    return subscription.current_period_end is not None and now < subscription.current_period_end


def compute_grace_anchor(subscription: Subscription, now: datetime) -> datetime:
    """Return the timestamp the grace period is measured from when auto-renew goes off.

    The trial end while the trial is open, otherwise the end of the open paid
    period. The final ``now`` branch covers records with neither window open.
    """
    if is_trial_open(subscription, now):
        return subscription.trial_ends_at  # type: ignore[return-value]
    if is_period_open(subscription, now) and is_paid_plan(subscription.plan):
        return subscription.current_period_end  # type: ignore[return-value]
    return now


def cancellation_due_at(anchor: datetime, grace: timedelta = GRACE_PERIOD) -> datetime:
    return anchor + grace


def is_cancellation_due(
    subscription: Subscription, now: datetime, grace: timedelta = GRACE_PERIOD
) -> bool:
    """True when a sweep may cancel this record right now."""
    if subscription.auto_renew or subscription.auto_renew_off_at is None:
        return False
    if subscription.status != SubscriptionStatus.ACTIVE:
        return False
    return now >= cancellation_due_at(subscription.auto_renew_off_at, grace)


def derive_state(subscription: Subscription, now: datetime) -> LifecycleState:
    """Classify a record into one of the lifecycle states."""
    if subscription.status == SubscriptionStatus.CANCELLED:
        return LifecycleState.CANCELLED
    if is_trial_open(subscription, now):
        return LifecycleState.TRIAL_ACTIVE
    if subscription.status == SubscriptionStatus.ACTIVE and (
        is_period_open(subscription, now)
        or (subscription.current_period_end is None and is_paid_plan(subscription.plan))
    ):
        return LifecycleState.PAID_ACTIVE
    if subscription.status == SubscriptionStatus.ACTIVE and not subscription.auto_renew:
        return LifecycleState.GRACE_PERIOD
    if subscription.trial_ends_at is None and subscription.current_period_end is None:
        return LifecycleState.LAPSED
    if subscription.status == SubscriptionStatus.ACTIVE:
        # Windows elapsed but renewal is still on; the evaluator reinstates access.
        return LifecycleState.PAID_ACTIVE
    return LifecycleState.LAPSED


def format_date(value: datetime) -> str:
    """Human-readable date used in user-facing messages, e.g. ``March 4, 2026``."""
    return f"{value:%B} {value.day}, {value.year}"
