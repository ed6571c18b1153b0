"""Tests for the scheduled cancellation sweep with Stripe mocked."""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
import stripe

from snapparchive.services.cancellation_sweep import run_cancellation_sweep

NOW = datetime(2026, 3, 1, 12, 0, 0)
GRACE = timedelta(days=2)
CANCEL = "snapparchive.services.cancellation_sweep.cancel_subscription"


class TestSweep:
    @pytest.mark.asyncio
    async def test_cancels_elapsed_and_leaves_recent(self, session_factory, make_subscription, load_subscription):
        """Three days off is cancelled; one day off is left alone."""
        due = await make_subscription(
            stripe_subscription_id="sub_due",
            auto_renew=False,
            auto_renew_off_at=NOW - timedelta(days=3),
        )
        recent = await make_subscription(
            stripe_subscription_id="sub_recent",
            auto_renew=False,
            auto_renew_off_at=NOW - timedelta(days=1),
        )

        with patch(CANCEL, new_callable=AsyncMock) as mock_cancel:
            report = await run_cancellation_sweep(session_factory, now=NOW, grace=GRACE)

        mock_cancel.assert_awaited_once_with("sub_due")
        assert report.processed == 2
        assert report.cancelled == 1
        assert report.skipped == 1
        assert report.errored == 0

        cancelled = await load_subscription(due.account_id)
        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_at == NOW
        assert cancelled.auto_renew_off_at is None

        untouched = await load_subscription(recent.account_id)
        assert untouched.status == "active"
        assert untouched.auto_renew_off_at == NOW - timedelta(days=1)

    @pytest.mark.asyncio
    async def test_candidate_inside_margin_is_skipped(self, session_factory, make_subscription, load_subscription):
        """Selected by the margin but not yet due: counted as skipped, never cancelled."""
        almost = await make_subscription(
            stripe_subscription_id="sub_almost",
            auto_renew=False,
            auto_renew_off_at=NOW - GRACE + timedelta(minutes=1),
        )

        with patch(CANCEL, new_callable=AsyncMock) as mock_cancel:
            report = await run_cancellation_sweep(
                session_factory, now=NOW, grace=GRACE, margin=timedelta(minutes=5)
            )

        mock_cancel.assert_not_awaited()
        assert report.processed == 1
        assert report.skipped == 1
        assert report.cancelled == 0
        assert (await load_subscription(almost.account_id)).status == "active"

    @pytest.mark.asyncio
    async def test_record_without_stripe_subscription_is_cancelled_locally(
        self, session_factory, make_subscription, load_subscription
    ):
        local = await make_subscription(
            plan="trial",
            auto_renew=False,
            auto_renew_off_at=NOW - timedelta(days=5),
        )

        with patch(CANCEL, new_callable=AsyncMock) as mock_cancel:
            report = await run_cancellation_sweep(session_factory, now=NOW, grace=GRACE)

        mock_cancel.assert_not_awaited()
        assert report.cancelled == 1
        assert (await load_subscription(local.account_id)).status == "cancelled"

    @pytest.mark.asyncio
    async def test_partial_failure_isolation(self, session_factory, make_subscription, load_subscription):
        """A failing candidate does not stop the healthy one behind it."""
        failing = await make_subscription(
            stripe_subscription_id="sub_fail",
            auto_renew=False,
            auto_renew_off_at=NOW - timedelta(days=6),
        )
        healthy = await make_subscription(
            stripe_subscription_id="sub_ok",
            auto_renew=False,
            auto_renew_off_at=NOW - timedelta(days=4),
        )

        async def _cancel(subscription_id: str):
            if subscription_id == "sub_fail":
                raise stripe.APIConnectionError("Stripe unreachable")
            return None

        with patch(CANCEL, new=AsyncMock(side_effect=_cancel)):
            report = await run_cancellation_sweep(session_factory, now=NOW, grace=GRACE)

        assert report.processed == 2
        assert report.cancelled == 1
        assert report.errored == 1
        assert report.errors[0].account_id == str(failing.account_id)
        assert "Stripe unreachable" in report.errors[0].error

        assert (await load_subscription(failing.account_id)).status == "active"
        assert (await load_subscription(healthy.account_id)).status == "cancelled"

    @pytest.mark.asyncio
    async def test_slow_candidate_times_out(self, session_factory, make_subscription, load_subscription):
        slow = await make_subscription(
            stripe_subscription_id="sub_slow",
            auto_renew=False,
            auto_renew_off_at=NOW - timedelta(days=6),
        )
        fast = await make_subscription(
            stripe_subscription_id="sub_fast",
            auto_renew=False,
            auto_renew_off_at=NOW - timedelta(days=4),
        )

        async def _cancel(subscription_id: str):
            if subscription_id == "sub_slow":
                await asyncio.sleep(5)
            return None

        with patch(CANCEL, new=AsyncMock(side_effect=_cancel)):
            report = await run_cancellation_sweep(session_factory, now=NOW, grace=GRACE, candidate_timeout=0.2)

        assert report.errored == 1
        assert "Timed out" in report.errors[0].error
        assert report.cancelled == 1
        assert (await load_subscription(slow.account_id)).status == "active"
        assert (await load_subscription(fast.account_id)).status == "cancelled"

    @pytest.mark.asyncio
    async def test_empty_run(self, session_factory):
        report = await run_cancellation_sweep(session_factory, now=NOW, grace=GRACE)
        assert report.as_dict() == {
            "processed": 0,
            "cancelled": 0,
            "skipped": 0,
            "errors": [],
            "errored": 0,
        }
        assert report.message == "Processed 0 subscriptions, cancelled 0, skipped 0, errors 0"
