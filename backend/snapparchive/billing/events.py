"""Typed Stripe webhook events.

Verified ``stripe.Event`` objects are decoded once, here, into frozen
dataclasses. Handlers only ever see these types; anything we do not act on
becomes ``UnrecognizedEvent``.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Union

import stripe

from snapparchive.billing.lifecycle import ts_to_naive as _ts_to_naive
from snapparchive.billing.lifecycle import utcnow


class EventDecodeError(ValueError):
    """A known event type is missing a field the handlers rely on."""


def _field(obj: Any, name: str) -> Any:
    """Read an optional attribute from a Stripe object."""
    if obj is None:
        return None
    return getattr(obj, name, None)


def _ref(value: Any) -> str | None:
    """Return the ID of a Stripe reference that may or may not be expanded."""
    if value is None or isinstance(value, str):
        return value
    return getattr(value, "id", None)


def _get_first_item(stripe_sub: Any):
    """Get the first subscription item, using bracket notation to avoid
    collision with Python dict .items() in newer Stripe API versions.
    """
    try:
        sub_items = stripe_sub["items"]
    except (AttributeError, KeyError, TypeError):
        return None
    if sub_items and sub_items.data:
        return sub_items.data[0]
    return None


def _get_price_id_from_subscription(stripe_sub: Any) -> str | None:
    """Extract the first price ID from a Stripe subscription's items."""
    item = _get_first_item(stripe_sub)
    return item.price.id if item else None


def _get_period(stripe_sub: Any) -> tuple[datetime | None, datetime | None]:
    """Extract current period start/end.

    In Stripe API 2025-08-27 (basil), current_period_start/end moved
    from the subscription object to the subscription item; older API
    versions still carry them on the subscription.
    """
    item = _get_first_item(stripe_sub)
    start = _field(item, "current_period_start") or _field(stripe_sub, "current_period_start")
    end = _field(item, "current_period_end") or _field(stripe_sub, "current_period_end")
    return _ts_to_naive(start), _ts_to_naive(end)


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """The parts of a Stripe subscription the reconciler consumes."""

    subscription_id: str
    customer_id: str | None
    provider_status: str | None
    price_id: str | None
    trial_end: datetime | None
    period_start: datetime | None
    period_end: datetime | None
    cancel_at_period_end: bool
    canceled_at: datetime | None
    account_id: str | None = None


def snapshot_subscription(stripe_sub: Any) -> SubscriptionSnapshot:
    """Decode a Stripe subscription object (from an event or a retrieve call)."""
    subscription_id = _field(stripe_sub, "id")
    if not subscription_id:
        raise EventDecodeError("subscription object has no id")
    period_start, period_end = _get_period(stripe_sub)
    metadata = _field(stripe_sub, "metadata")
    return SubscriptionSnapshot(
        subscription_id=subscription_id,
        customer_id=_ref(_field(stripe_sub, "customer")),
        provider_status=_field(stripe_sub, "status"),
        price_id=_get_price_id_from_subscription(stripe_sub),
        trial_end=_ts_to_naive(_field(stripe_sub, "trial_end")),
        period_start=period_start,
        period_end=period_end,
        cancel_at_period_end=bool(_field(stripe_sub, "cancel_at_period_end")),
        canceled_at=_ts_to_naive(_field(stripe_sub, "canceled_at")),
        account_id=_field(metadata, "account_id"),
    )


@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    occurred_at: datetime
    session_id: str
    account_id: str | None
    customer_id: str | None
    subscription_id: str | None
    customer_email: str | None
    event_type: str = "checkout.session.completed"


@dataclass(frozen=True)
class SubscriptionChanged:
    """customer.subscription.created / customer.subscription.updated."""

    event_id: str
    occurred_at: datetime
    event_type: str
    subscription: SubscriptionSnapshot


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str
    occurred_at: datetime
    subscription: SubscriptionSnapshot
    event_type: str = "customer.subscription.deleted"


@dataclass(frozen=True)
class InvoicePaid:
    event_id: str
    occurred_at: datetime
    invoice_id: str
    customer_id: str
    subscription_id: str | None
    amount_paid_cents: int
    currency: str | None
    customer_email: str | None
    event_type: str = "invoice.paid"


@dataclass(frozen=True)
class InvoicePaymentFailed:
    event_id: str
    occurred_at: datetime
    invoice_id: str
    customer_id: str
    failure_reason: str
    customer_email: str | None
    event_type: str = "invoice.payment_failed"


@dataclass(frozen=True)
class UnrecognizedEvent:
    event_id: str
    occurred_at: datetime
    event_type: str


BillingEvent = Union[
    CheckoutCompleted,
    SubscriptionChanged,
    SubscriptionDeleted,
    InvoicePaid,
    InvoicePaymentFailed,
    UnrecognizedEvent,
]


def _invoice_subscription_id(invoice: Any) -> str | None:
    subscription_id = _ref(_field(invoice, "subscription"))
    if subscription_id:
        return subscription_id
    # Newer API versions nest it under parent.subscription_details
    details = _field(_field(invoice, "parent"), "subscription_details")
    return _ref(_field(details, "subscription"))


def _invoice_failure_reason(invoice: Any) -> str:
    for source in ("last_finalization_error", "last_payment_error"):
        message = _field(_field(invoice, source), "message")
        if message:
            return message
    return "Payment failed"


def _require_customer(obj: Any, event_type: str) -> str:
    customer_id = _ref(_field(obj, "customer"))
    if not customer_id:
        raise EventDecodeError(f"{event_type} payload has no customer")
    return customer_id


def decode_event(event: stripe.Event) -> BillingEvent:
    """Decode a verified Stripe event into its typed variant."""
    event_type = event.type
    event_id = event.id
    occurred_at = _ts_to_naive(getattr(event, "created", None)) or utcnow()
    obj = event.data.object

    if event_type == "checkout.session.completed":
        metadata = _field(obj, "metadata")
        details = _field(obj, "customer_details")
        return CheckoutCompleted(
            event_id=event_id,
            occurred_at=occurred_at,
            session_id=obj.id,
            account_id=_field(metadata, "account_id") or _field(obj, "client_reference_id"),
            customer_id=_ref(_field(obj, "customer")),
            subscription_id=_ref(_field(obj, "subscription")),
            customer_email=_field(details, "email") or _field(obj, "customer_email"),
        )

    if event_type in ("customer.subscription.created", "customer.subscription.updated"):
        _require_customer(obj, event_type)
        return SubscriptionChanged(
            event_id=event_id,
            occurred_at=occurred_at,
            event_type=event_type,
            subscription=snapshot_subscription(obj),
        )

    if event_type == "customer.subscription.deleted":
        _require_customer(obj, event_type)
        return SubscriptionDeleted(
            event_id=event_id,
            occurred_at=occurred_at,
            subscription=snapshot_subscription(obj),
        )

    if event_type == "invoice.paid":
        return InvoicePaid(
            event_id=event_id,
            occurred_at=occurred_at,
            invoice_id=obj.id,
            customer_id=_require_customer(obj, event_type),
            subscription_id=_invoice_subscription_id(obj),
            amount_paid_cents=int(_field(obj, "amount_paid") or 0),
            currency=_field(obj, "currency"),
            customer_email=_field(obj, "customer_email"),
        )

    if event_type == "invoice.payment_failed":
        return InvoicePaymentFailed(
            event_id=event_id,
            occurred_at=occurred_at,
            invoice_id=obj.id,
            customer_id=_require_customer(obj, event_type),
            failure_reason=_invoice_failure_reason(obj),
            customer_email=_field(obj, "customer_email"),
        )

    return UnrecognizedEvent(event_id=event_id, occurred_at=occurred_at, event_type=event_type)
