"""Plan definitions — pricing tiers and the Stripe price mapping."""

import logging
from dataclasses import dataclass

from snapparchive.config import settings
from snapparchive.models.subscription import Plan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanInfo:
    """Display and billing details for a subscription plan."""

    name: str
    display_name: str
    price_monthly_cents: int  # in cents (e.g., 2900 = €29.00)
    stripe_price_id: str | None  # None for the trial placeholder


PLANS: dict[str, PlanInfo] = {
    Plan.TRIAL.value: PlanInfo(
        name=Plan.TRIAL.value,
        display_name="Trial",
        price_monthly_cents=0,
        stripe_price_id=None,
    ),
    Plan.BASIC.value: PlanInfo(
        name=Plan.BASIC.value,
        display_name="Core",
        price_monthly_cents=2900,
        stripe_price_id=settings.stripe_basic_price_id or None,
    ),
    Plan.PRO.value: PlanInfo(
        name=Plan.PRO.value,
        display_name="Pro",
        price_monthly_cents=4900,
        stripe_price_id=settings.stripe_pro_price_id or None,
    ),
    Plan.ENTERPRISE.value: PlanInfo(
        name=Plan.ENTERPRISE.value,
        display_name="Business",
        price_monthly_cents=7900,
        stripe_price_id=settings.stripe_enterprise_price_id or None,
    ),
}

PAID_PLAN_NAMES: frozenset[str] = frozenset(
    name for name, info in PLANS.items() if name != Plan.TRIAL.value
)

# Lowest paid tier; used when Stripe reports a price we do not know.
FALLBACK_PLAN = Plan.BASIC.value


def get_plan(plan_name: str) -> PlanInfo:
    """Get plan info by name. Defaults to the trial placeholder if unknown."""
    return PLANS.get(plan_name, PLANS[Plan.TRIAL.value])


def is_paid_plan(plan_name: str) -> bool:
    return plan_name in PAID_PLAN_NAMES


def get_plan_by_price_id(price_id: str) -> str | None:
    """Reverse lookup: Stripe price ID -> plan name. Returns None if not found."""
    for plan in PLANS.values():
        if plan.stripe_price_id and plan.stripe_price_id == price_id:
            return plan.name
    return None


def resolve_plan(price_id: str | None) -> str:
    """Map a Stripe price to a plan, falling back to the lowest paid tier."""
    plan = get_plan_by_price_id(price_id) if price_id else None
    if plan is None:
        logger.warning(
            "Unknown Stripe price ID %s — defaulting to plan %s; reconcile manually",
            price_id,
            FALLBACK_PLAN,
        )
        return FALLBACK_PLAN
    return plan
