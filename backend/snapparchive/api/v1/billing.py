"""Billing API endpoints — subscription status, auto-renew toggle, Stripe Checkout and Portal."""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from snapparchive.api.deps import (
    Account,
    get_access_decision,
    get_current_account,
    get_subscription_store,
)
from snapparchive.billing.access import AccessDecision, evaluate_access
from snapparchive.billing.lifecycle import cancellation_due_at, derive_state, utcnow
from snapparchive.billing.plans import PAID_PLAN_NAMES, PLANS, PlanInfo, get_plan
from snapparchive.billing.stripe_client import create_checkout_session, create_portal_session
from snapparchive.config import settings
from snapparchive.models.subscription import Subscription
from snapparchive.schemas.billing import (
    AccessResponse,
    CheckoutRequest,
    CheckoutResponse,
    InvoiceSummaryResponse,
    PlanResponse,
    PlansListResponse,
    PortalRequest,
    PortalResponse,
    SubscriptionResponse,
    ToggleAutoRenewRequest,
    ToggleAutoRenewResponse,
    UpcomingInvoiceResponse,
)
from snapparchive.services.subscription_service import (
    SubscriptionCancelledError,
    SubscriptionNotFoundError,
    SubscriptionUpdateError,
    ensure_stripe_customer,
    get_invoice_summary,
    get_upcoming_invoice,
    has_live_provider_subscription,
    toggle_auto_renew,
)
from snapparchive.services.rate_limit import billing_write_limit, limiter
from snapparchive.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


def _plan_response(plan: PlanInfo) -> PlanResponse:
    return PlanResponse(
        name=plan.name,
        display_name=plan.display_name,
        price_monthly_cents=plan.price_monthly_cents,
    )


def _access_response(decision: AccessDecision) -> AccessResponse:
    return AccessResponse(
        can_perform=decision.can_perform,
        is_active=decision.is_active,
        warning=decision.warning,
        rule=decision.rule,
    )


async def _require_subscription(store: SubscriptionStore, account: Account) -> Subscription:
    subscription = await store.get_by_account(account.id)
    if subscription is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No subscription found",
        )
    return subscription


@router.get("/plans", response_model=PlansListResponse)
async def list_plans() -> PlansListResponse:
    """List available plans (public — no auth required)."""
    return PlansListResponse(plans=[_plan_response(p) for p in PLANS.values()])


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    store: SubscriptionStore = Depends(get_subscription_store),
    account: Account = Depends(get_current_account),
) -> SubscriptionResponse:
    """Get the current subscription record, its lifecycle state and access outcome."""
    subscription = await _require_subscription(store, account)
    now = utcnow()

    return SubscriptionResponse(
        plan=_plan_response(get_plan(subscription.plan)),
        status=subscription.status,
        state=derive_state(subscription, now).value,
        stripe_subscription_id=subscription.stripe_subscription_id,
        trial_ends_at=subscription.trial_ends_at,
        current_period_start=subscription.current_period_start,
        current_period_end=subscription.current_period_end,
        auto_renew=subscription.auto_renew,
        auto_renew_off_at=subscription.auto_renew_off_at,
        cancellation_date=(
            cancellation_due_at(subscription.auto_renew_off_at)
            if subscription.auto_renew_off_at
            else None
        ),
        cancel_at_period_end=subscription.cancel_at_period_end,
        cancelled_at=subscription.cancelled_at,
        last_payment_at=subscription.last_payment_at,
        payment_failed_at=subscription.payment_failed_at,
        payment_failure_reason=subscription.payment_failure_reason,
        access=_access_response(evaluate_access(subscription, now)),
    )


@router.get("/access", response_model=AccessResponse)
async def get_access(
    decision: AccessDecision = Depends(get_access_decision),
) -> AccessResponse:
    """Whether the account may currently upload, edit, move or delete documents."""
    return _access_response(decision)


@router.post("/toggle-auto-renew", response_model=ToggleAutoRenewResponse)
@limiter.limit(billing_write_limit)
async def toggle_auto_renew_endpoint(
    request: Request,
    response: Response,
    body: ToggleAutoRenewRequest,
    store: SubscriptionStore = Depends(get_subscription_store),
    account: Account = Depends(get_current_account),
) -> ToggleAutoRenewResponse:
    """Turn auto-renewal on or off, keeping Stripe and the local record in step."""
    try:
        result = await toggle_auto_renew(store, account.id, body.auto_renew)
    except SubscriptionNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No subscription found",
        ) from e
    except SubscriptionCancelledError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Subscription is cancelled. Start a new subscription to regain access.",
        ) from e
    except SubscriptionUpdateError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update subscription",
        ) from e
    except stripe.StripeError as e:
        logger.error("Stripe error toggling auto-renew for account %s: %s", account.id, e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to update subscription with payment provider",
        ) from e

    return ToggleAutoRenewResponse(
        auto_renew=result.auto_renew,
        auto_renew_off_at=result.auto_renew_off_at,
        cancellation_date=result.cancellation_date,
        message=result.message,
    )


@router.post("/checkout", response_model=CheckoutResponse)
@limiter.limit(billing_write_limit)
async def create_checkout(
    request: Request,
    response: Response,
    body: CheckoutRequest,
    store: SubscriptionStore = Depends(get_subscription_store),
    account: Account = Depends(get_current_account),
) -> CheckoutResponse:
    """Create a Stripe Checkout session that starts a trial on the chosen plan."""
    if body.plan not in PAID_PLAN_NAMES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid plan. Choose 'basic', 'pro' or 'enterprise'.",
        )

    plan = get_plan(body.plan)
    if not plan.stripe_price_id:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stripe price ID not configured for plan.",
        )

    existing = await store.get_by_account(account.id)
    if has_live_provider_subscription(existing):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="You already have an active subscription. Manage it from the billing portal.",
        )

    success_url = (
        body.success_url
        or f"{settings.frontend_url}/billing?session_id={{CHECKOUT_SESSION_ID}}"
    )
    cancel_url = body.cancel_url or f"{settings.frontend_url}/pricing"

    try:
        customer_id = await ensure_stripe_customer(store, account.id, account.email)
        session = await create_checkout_session(
            customer_id=customer_id,
            price_id=plan.stripe_price_id,
            account_id=str(account.id),
            success_url=success_url,
            cancel_url=cancel_url,
            trial_period_days=settings.trial_period_days,
        )
    except stripe.StripeError as e:
        logger.error("Stripe checkout error: %s", e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e),
        ) from e

    await store.commit()

    return CheckoutResponse(
        checkout_url=session.url,
        session_id=session.id,
    )


@router.post("/portal", response_model=PortalResponse)
async def create_portal(
    body: PortalRequest,
    store: SubscriptionStore = Depends(get_subscription_store),
    account: Account = Depends(get_current_account),
) -> PortalResponse:
    """Create a Stripe Customer Portal session for subscription management."""
    subscription = await store.get_by_account(account.id)

    if subscription is None or not subscription.stripe_customer_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No Stripe customer found. Subscribe first.",
        )

    return_url = body.return_url or f"{settings.frontend_url}/billing"

    try:
        session = await create_portal_session(
            customer_id=subscription.stripe_customer_id,
            return_url=return_url,
        )
    except stripe.StripeError as e:
        logger.error("Stripe portal error: %s", e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e),
        ) from e

    return PortalResponse(portal_url=session.url)


@router.get("/upcoming-invoice", response_model=UpcomingInvoiceResponse)
async def upcoming_invoice(
    store: SubscriptionStore = Depends(get_subscription_store),
    account: Account = Depends(get_current_account),
) -> UpcomingInvoiceResponse:
    """Preview the next charge. Null while on trial or with auto-renew off."""
    subscription = await _require_subscription(store, account)
    return UpcomingInvoiceResponse(upcoming_invoice=await get_upcoming_invoice(subscription))


@router.get("/invoice-summary", response_model=InvoiceSummaryResponse)
async def invoice_summary(
    store: SubscriptionStore = Depends(get_subscription_store),
    account: Account = Depends(get_current_account),
) -> InvoiceSummaryResponse:
    """Latest payment and upcoming invoice for the billing page."""
    subscription = await _require_subscription(store, account)
    try:
        summary = await get_invoice_summary(subscription)
    except stripe.StripeError as e:
        logger.error("Stripe error building invoice summary for account %s: %s", account.id, e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to fetch invoice details",
        ) from e
    return InvoiceSummaryResponse(**summary)
