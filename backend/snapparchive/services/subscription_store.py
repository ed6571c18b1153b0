"""Subscription record store — persistence seam for the lifecycle code.

No business rules live here. Every write refreshes ``updated_at`` and reads
used for read-then-decide paths take a row lock (``SELECT ... FOR UPDATE``)
so concurrent writers for one account are serialised by the database.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from snapparchive.billing.lifecycle import utcnow
from snapparchive.models.subscription import Subscription, SubscriptionStatus

logger = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = frozenset({"id", "account_id", "created_at", "updated_at"})


def _awaiting_cancellation():
    return (
        Subscription.auto_renew.is_(False),
        Subscription.status == SubscriptionStatus.ACTIVE.value,
        Subscription.auto_renew_off_at.is_not(None),
    )


class SubscriptionStore:
    """Reads and writes ``Subscription`` rows through one ``AsyncSession``."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_by_account(self, account_id: uuid.UUID, for_update: bool = False) -> Subscription | None:
        stmt = select(Subscription).where(Subscription.account_id == account_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_provider_customer_ref(
        self, stripe_customer_id: str, for_update: bool = False
    ) -> Subscription | None:
        """Look up a subscription by Stripe customer ID (used by webhooks)."""
        stmt = select(Subscription).where(Subscription.stripe_customer_id == stripe_customer_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(self, account_id: uuid.UUID, **fields: Any) -> Subscription:
        """Create the account's row or overwrite the given fields on it."""
        subscription = await self.get_by_account(account_id, for_update=True)
        if subscription is None:
            logger.info("Creating subscription record for account %s", account_id)
            subscription = Subscription(account_id=account_id)
            self.db.add(subscription)
        self._apply(subscription, fields)
        await self.db.flush()
        return subscription

    async def update(self, account_id: uuid.UUID, **fields: Any) -> Subscription | None:
        """Overwrite fields on an existing row. Returns None if there is no row."""
        subscription = await self.get_by_account(account_id, for_update=True)
        if subscription is None:
            return None
        self._apply(subscription, fields)
        await self.db.flush()
        return subscription

    async def list_cancellation_candidates(
        self,
        now: datetime,
        grace: timedelta,
        margin: timedelta = timedelta(0),
    ) -> list[Subscription]:
        """Active rows with auto-renew off whose grace period has (nearly) elapsed.

        ``margin`` widens the selection slightly; the sweep re-checks each row
        against the exact deadline before acting.
        """
        cutoff = now - grace + margin
        result = await self.db.execute(
            select(Subscription)
            .where(*_awaiting_cancellation(), Subscription.auto_renew_off_at < cutoff)
            .order_by(Subscription.auto_renew_off_at)
        )
        return list(result.scalars().all())

    async def count_grace_pending(
        self,
        now: datetime,
        grace: timedelta,
        margin: timedelta = timedelta(0),
    ) -> int:
        """Rows ``list_cancellation_candidates`` leaves out because their grace period is still running."""
        cutoff = now - grace + margin
        result = await self.db.execute(
            select(func.count())
            .select_from(Subscription)
            .where(*_awaiting_cancellation(), Subscription.auto_renew_off_at >= cutoff)
        )
        return result.scalar_one()

    async def commit(self) -> None:
        await self.db.commit()

    @staticmethod
    def _apply(subscription: Subscription, fields: dict[str, Any]) -> None:
        for name, value in fields.items():
            if name in _IMMUTABLE_FIELDS:
                raise ValueError(f"Field {name!r} cannot be written through the store")
            if not hasattr(Subscription, name):
                raise AttributeError(f"Subscription has no field {name!r}")
            setattr(subscription, name, value)
        subscription.updated_at = utcnow()
