"""Billing dependencies — record store, the shared notifier and access gating."""

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from snapparchive.auth.dependencies import Account, get_current_account
from snapparchive.billing.access import AccessDecision, evaluate_access
from snapparchive.billing.lifecycle import utcnow
from snapparchive.database import get_db
from snapparchive.services.notifications import EmailNotifier
from snapparchive.services.subscription_store import SubscriptionStore


async def get_subscription_store(db: AsyncSession = Depends(get_db)) -> SubscriptionStore:
    return SubscriptionStore(db)


def get_notifier(request: Request) -> EmailNotifier:
    """The process-wide email notifier created at startup."""
    return request.app.state.notifier


async def get_access_decision(
    account: Account = Depends(get_current_account),
    store: SubscriptionStore = Depends(get_subscription_store),
) -> AccessDecision:
    """Evaluate the access policy for the calling account."""
    subscription = await store.get_by_account(account.id)
    return evaluate_access(subscription, utcnow())


async def require_write_access(
    decision: AccessDecision = Depends(get_access_decision),
) -> AccessDecision:
    """Raise 402 if the account may not upload, edit, move or delete documents."""
    if not decision.can_perform:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "message": decision.warning,
                "rule": decision.rule,
                "upgrade_url": "/api/v1/billing/checkout",
            },
        )
    return decision
