"""Async Stripe API wrapper for SnappArchive billing."""

import logging

import stripe
from stripe import StripeClient

from snapparchive.config import settings

logger = logging.getLogger(__name__)


def get_stripe_client() -> StripeClient:
    """Create a StripeClient instance with async HTTP support."""
    return StripeClient(
        settings.stripe_secret_key,
        http_client=stripe.HTTPXClient(),
    )


async def create_customer(email: str | None, name: str | None, account_id: str) -> stripe.Customer:
    """Create a Stripe customer linked to a SnappArchive account."""
    client = get_stripe_client()
    logger.info("Creating Stripe customer for account %s (%s)", account_id, email)
    params: dict = {"metadata": {"account_id": account_id}}
    if email:
        params["email"] = email
    if name:
        params["name"] = name
    customer = await client.v1.customers.create_async(params=params)
    logger.info("Created Stripe customer %s for account %s", customer.id, account_id)
    return customer


async def create_checkout_session(
    customer_id: str,
    price_id: str,
    account_id: str,
    success_url: str,
    cancel_url: str,
    trial_period_days: int | None = None,
) -> stripe.checkout.Session:
    """Create a subscription-mode Checkout Session that collects a card up front."""
    client = get_stripe_client()
    logger.info(
        "Creating checkout session for customer %s, price %s",
        customer_id,
        price_id,
    )
    subscription_data: dict = {"metadata": {"account_id": account_id}}
    if trial_period_days:
        subscription_data["trial_period_days"] = trial_period_days
        subscription_data["trial_settings"] = {
            "end_behavior": {"missing_payment_method": "cancel"},
        }
    return await client.v1.checkout.sessions.create_async(
        params={
            "mode": "subscription",
            "customer": customer_id,
            "payment_method_collection": "always",
            "line_items": [{"price": price_id, "quantity": 1}],
            "subscription_data": subscription_data,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": account_id,
            "metadata": {"account_id": account_id},
            "allow_promotion_codes": True,
        }
    )


async def create_portal_session(
    customer_id: str, return_url: str
) -> stripe.billing_portal.Session:
    """Create a Stripe Customer Portal session for subscription management."""
    client = get_stripe_client()
    logger.info("Creating portal session for customer %s", customer_id)
    return await client.v1.billing_portal.sessions.create_async(
        params={
            "customer": customer_id,
            "return_url": return_url,
        }
    )


async def get_subscription(subscription_id: str, expand: list[str] | None = None) -> stripe.Subscription:
    """Retrieve a Stripe subscription by ID."""
    client = get_stripe_client()
    if expand:
        return await client.v1.subscriptions.retrieve_async(
            subscription_id, params={"expand": expand}
        )
    return await client.v1.subscriptions.retrieve_async(subscription_id)


async def set_cancel_at_period_end(subscription_id: str, cancel: bool) -> stripe.Subscription:
    """Set or clear Stripe's cancel-at-period-end flag."""
    client = get_stripe_client()
    logger.info("Setting cancel_at_period_end=%s on subscription %s", cancel, subscription_id)
    return await client.v1.subscriptions.update_async(
        subscription_id,
        params={"cancel_at_period_end": cancel},
    )


async def cancel_subscription(subscription_id: str) -> stripe.Subscription | None:
    """Cancel a Stripe subscription immediately.

    A subscription that is already canceled, or no longer exists on Stripe,
    counts as success.
    """
    client = get_stripe_client()
    try:
        return await client.v1.subscriptions.cancel_async(subscription_id)
    except stripe.InvalidRequestError as e:
        if e.code == "resource_missing":
            logger.info("Subscription %s no longer exists on Stripe", subscription_id)
            return None
        existing = await client.v1.subscriptions.retrieve_async(subscription_id)
        if existing.status == "canceled":
            logger.info("Subscription %s was already canceled on Stripe", subscription_id)
            return existing
        raise


async def preview_upcoming_invoice(customer_id: str, subscription_id: str) -> stripe.Invoice:
    """Preview the next invoice Stripe will issue for a subscription."""
    client = get_stripe_client()
    return await client.v1.invoices.create_preview_async(
        params={
            "customer": customer_id,
            "subscription": subscription_id,
        }
    )


def construct_webhook_event(payload: bytes, sig_header: str) -> stripe.Event:
    """Verify and construct a Stripe webhook event (synchronous)."""
    client = get_stripe_client()
    return client.construct_event(payload, sig_header, settings.stripe_webhook_secret)
