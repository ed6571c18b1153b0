"""Pydantic v2 request/response schemas for billing endpoints."""

from datetime import datetime

from pydantic import BaseModel

# --- Request schemas ---


class ToggleAutoRenewRequest(BaseModel):
    """Turn auto-renewal on or off."""

    auto_renew: bool


class CheckoutRequest(BaseModel):
    """Request to create a Stripe Checkout session."""

    plan: str  # "basic", "pro" or "enterprise"
    success_url: str | None = None
    cancel_url: str | None = None


class PortalRequest(BaseModel):
    """Request to create a Stripe Customer Portal session."""

    return_url: str | None = None


# --- Response schemas ---


class ToggleAutoRenewResponse(BaseModel):
    success: bool = True
    auto_renew: bool
    auto_renew_off_at: datetime | None
    cancellation_date: datetime | None
    message: str


class AccessResponse(BaseModel):
    """Outcome of the access policy for the authenticated account."""

    can_perform: bool
    is_active: bool
    warning: str | None
    rule: str


class PlanResponse(BaseModel):
    """Plan details for display."""

    name: str
    display_name: str
    price_monthly_cents: int


class PlansListResponse(BaseModel):
    """All available plans."""

    plans: list[PlanResponse]


class SubscriptionResponse(BaseModel):
    """Subscription record, lifecycle state and access outcome."""

    plan: PlanResponse
    status: str
    state: str
    stripe_subscription_id: str | None
    trial_ends_at: datetime | None
    current_period_start: datetime | None
    current_period_end: datetime | None
    auto_renew: bool
    auto_renew_off_at: datetime | None
    cancellation_date: datetime | None
    cancel_at_period_end: bool
    cancelled_at: datetime | None
    last_payment_at: datetime | None
    payment_failed_at: datetime | None
    payment_failure_reason: str | None
    access: AccessResponse


class CheckoutResponse(BaseModel):
    """Stripe Checkout session URL returned to frontend."""

    checkout_url: str
    session_id: str


class PortalResponse(BaseModel):
    """Stripe Customer Portal URL returned to frontend."""

    portal_url: str


class InvoicePreview(BaseModel):
    amount: float | None
    date: datetime | None
    currency: str | None
    status: str | None


class UpcomingInvoiceResponse(BaseModel):
    upcoming_invoice: InvoicePreview | None


class LatestPayment(BaseModel):
    amount_paid: float
    currency: str
    payment_date: datetime | None
    status: str


class InvoiceSummaryResponse(BaseModel):
    latest_payment: LatestPayment | None
    upcoming_invoice: InvoicePreview | None


class SweepErrorResponse(BaseModel):
    subscription_id: str
    account_id: str
    error: str


class SweepResultsResponse(BaseModel):
    processed: int
    cancelled: int
    skipped: int
    errored: int
    errors: list[SweepErrorResponse]


class SweepReportResponse(BaseModel):
    """Summary returned by the scheduled cancellation sweep."""

    success: bool
    message: str
    results: SweepResultsResponse
