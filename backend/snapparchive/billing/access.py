"""Access policy — decide whether an account may perform write operations.

``evaluate_access`` is the single place this decision is made. It is pure:
no I/O, no clock reads, no logging. Rules are checked in order and the first
match wins:

1. no record                    -> denied, invite to subscribe
2. record cancelled             -> denied
3. trial window open            -> allowed (warn if auto-renew is off)
4. paid period open and active  -> allowed (warn if auto-renew is off)
5. active paid plan, no period  -> allowed (same warning policy as 4)
6. no trial or period ever set  -> denied, invite to subscribe
7. everything elapsed           -> allowed only if active with auto-renew on
"""

from dataclasses import dataclass
from datetime import datetime

from snapparchive.billing.lifecycle import format_date, is_period_open, is_trial_open
from snapparchive.billing.plans import is_paid_plan
from snapparchive.models.subscription import Subscription, SubscriptionStatus

NO_SUBSCRIPTION_WARNING = "Please subscribe to a plan to gain access to uploading and managing documents."
CANCELLED_WARNING = "Your subscription has been cancelled. Subscribe again to regain full access."
ENDED_WARNING = "Your subscription has ended. Enable auto-renewal or resubscribe to regain full access."
REINSTATED_WARNING = "Your plan has ended but auto-renewal is enabled. Access restored."
UNSET_PERIOD_WARNING = "Your subscription is active. Enable auto-renewal to ensure continued access."


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of the access policy for one account at one instant."""

    can_perform: bool
    is_active: bool
    warning: str | None
    rule: str


def evaluate_access(subscription: Subscription | None, now: datetime) -> AccessDecision:
    if subscription is None:
        return AccessDecision(
            can_perform=False,
            is_active=False,
            warning=NO_SUBSCRIPTION_WARNING,
            rule="no_subscription",
        )

    is_active = subscription.status == SubscriptionStatus.ACTIVE
    auto_renew = bool(subscription.auto_renew)

    if subscription.status == SubscriptionStatus.CANCELLED:
        return AccessDecision(
            can_perform=False,
            is_active=False,
            warning=CANCELLED_WARNING,
            rule="cancelled",
        )

    if is_trial_open(subscription, now):
        trial_end = format_date(subscription.trial_ends_at)  # type: ignore[arg-type]
        if auto_renew:
            warning = f"You are on a free trial until {trial_end}. Full access is enabled."
        else:
            warning = (
                f"You are on a free trial until {trial_end}. "
                "Enable auto-renewal to continue access after the trial ends."
            )
        return AccessDecision(can_perform=True, is_active=is_active, warning=warning, rule="trial")

    if is_active and is_period_open(subscription, now):
        warning = None
        if not auto_renew:
            period_end = format_date(subscription.current_period_end)  # type: ignore[arg-type]
            warning = (
                f"Your subscription is active until {period_end}. "
                "Enable auto-renewal to continue access after this period ends."
            )
        return AccessDecision(can_perform=True, is_active=True, warning=warning, rule="paid_period")

    if is_active and subscription.current_period_end is None and is_paid_plan(subscription.plan):
        return AccessDecision(
            can_perform=True,
            is_active=True,
            warning=None if auto_renew else UNSET_PERIOD_WARNING,
            rule="paid_no_period",
        )

    if subscription.trial_ends_at is None and subscription.current_period_end is None:
        # Placeholder left by an abandoned checkout: nothing has elapsed to reinstate.
        return AccessDecision(
            can_perform=False,
            is_active=is_active,
            warning=NO_SUBSCRIPTION_WARNING,
            rule="checkout_incomplete",
        )

    if is_active and auto_renew:
        return AccessDecision(
            can_perform=True,
            is_active=True,
            warning=REINSTATED_WARNING,
            rule="reinstated",
        )

    return AccessDecision(can_perform=False, is_active=is_active, warning=ENDED_WARNING, rule="ended")
