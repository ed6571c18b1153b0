"""Cancellation sweep — cancel subscriptions whose grace period has elapsed.

Candidates are selected in one query, then handled one at a time, each in
its own session and under its own timeout, so a failing or slow candidate
cannot stop the rest of the batch. Failed candidates stay active and are
picked up again by the next run. Rows whose grace period is still running
are counted as skipped and left untouched.
"""

import asyncio
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from snapparchive.billing.lifecycle import GRACE_PERIOD, is_cancellation_due, utcnow
from snapparchive.billing.stripe_client import cancel_subscription
from snapparchive.config import settings
from snapparchive.models.subscription import SubscriptionStatus
from snapparchive.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)


@dataclass
class SweepError:
    subscription_id: str
    account_id: str
    error: str


@dataclass
class SweepReport:
    processed: int = 0
    cancelled: int = 0
    skipped: int = 0
    errors: list[SweepError] = field(default_factory=list)

    @property
    def errored(self) -> int:
        return len(self.errors)

    @property
    def message(self) -> str:
        return (
            f"Processed {self.processed} subscriptions, cancelled {self.cancelled}, "
            f"skipped {self.skipped}, errors {self.errored}"
        )

    def as_dict(self) -> dict:
        data = asdict(self)
        data["errored"] = self.errored
        return data


async def _cancel_one(
    session_factory: async_sessionmaker[AsyncSession],
    account_id: uuid.UUID,
    now: datetime,
    grace: timedelta,
) -> bool:
    """Cancel one candidate if it is still due. Returns False when skipped."""
    async with session_factory() as db:
        store = SubscriptionStore(db)
        subscription = await store.get_by_account(account_id, for_update=True)
        if subscription is None or not is_cancellation_due(subscription, now, grace):
            logger.info("Skipping account %s: cancellation date not reached or no longer applicable", account_id)
            return False

        if subscription.stripe_subscription_id:
            await cancel_subscription(subscription.stripe_subscription_id)

        await store.update(
            account_id,
            status=SubscriptionStatus.CANCELLED.value,
            cancelled_at=now,
            auto_renew_off_at=None,
        )
        await store.commit()
        logger.info("Cancelled subscription %s for account %s", subscription.id, account_id)
        return True


async def run_cancellation_sweep(
    session_factory: async_sessionmaker[AsyncSession],
    now: datetime | None = None,
    grace: timedelta = GRACE_PERIOD,
    margin: timedelta | None = None,
    candidate_timeout: float | None = None,
) -> SweepReport:
    """Cancel every active subscription whose auto-renew grace period has elapsed."""
    now = now or utcnow()
    margin = margin if margin is not None else timedelta(minutes=settings.sweep_selection_margin_minutes)
    candidate_timeout = candidate_timeout or settings.sweep_candidate_timeout_seconds

    async with session_factory() as db:
        store = SubscriptionStore(db)
        candidates = [
            (subscription.id, subscription.account_id)
            for subscription in await store.list_cancellation_candidates(now, grace, margin)
        ]
        pending = await store.count_grace_pending(now, grace, margin)

    logger.info(
        "Cancellation sweep found %d candidate(s), %d still inside the grace period",
        len(candidates),
        pending,
    )
    report = SweepReport(processed=pending, skipped=pending)

    for subscription_id, account_id in candidates:
        report.processed += 1
        try:
            cancelled = await asyncio.wait_for(
                _cancel_one(session_factory, account_id, now, grace),
                timeout=candidate_timeout,
            )
        except asyncio.TimeoutError:
            logger.error("Timed out cancelling subscription %s (account %s)", subscription_id, account_id)
            report.errors.append(
                SweepError(str(subscription_id), str(account_id), f"Timed out after {candidate_timeout}s")
            )
            continue
        except Exception as e:
            logger.exception("Error cancelling subscription %s (account %s)", subscription_id, account_id)
            report.errors.append(SweepError(str(subscription_id), str(account_id), str(e)))
            continue

        if cancelled:
            report.cancelled += 1
        else:
            report.skipped += 1

    logger.info("Cancellation sweep finished: %s", report.message)
    return report
