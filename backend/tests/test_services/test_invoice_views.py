"""Tests for upcoming-invoice and invoice-summary views with Stripe mocked."""

import uuid
from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
import stripe

from snapparchive.models.subscription import Subscription
from snapparchive.services.subscription_service import get_invoice_summary, get_upcoming_invoice

NOW = datetime(2026, 3, 1, 12, 0, 0)
PERIOD_END = datetime(2026, 3, 31, 12, 0, 0)
GET_SUBSCRIPTION = "snapparchive.services.subscription_service.get_subscription"
PREVIEW_INVOICE = "snapparchive.services.subscription_service.preview_upcoming_invoice"


def _sub(**fields) -> Subscription:
    fields.setdefault("plan", "pro")
    fields.setdefault("status", "active")
    fields.setdefault("auto_renew", True)
    fields.setdefault("stripe_customer_id", "cus_1")
    fields.setdefault("stripe_subscription_id", "sub_1")
    fields.setdefault("trial_ends_at", None)
    fields.setdefault("current_period_end", PERIOD_END)
    return Subscription(account_id=uuid.uuid4(), **fields)


def _stripe_sub(payment_intent=None) -> SimpleNamespace:
    return SimpleNamespace(
        customer="cus_1",
        latest_invoice=SimpleNamespace(payment_intent=payment_intent),
    )


class TestUpcomingInvoice:
    @pytest.mark.asyncio
    async def test_none_with_auto_renew_off(self):
        with patch(PREVIEW_INVOICE, new_callable=AsyncMock) as mock_preview:
            assert await get_upcoming_invoice(_sub(auto_renew=False), now=NOW) is None
        mock_preview.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_none_without_stripe_subscription(self):
        assert await get_upcoming_invoice(_sub(stripe_subscription_id=None), now=NOW) is None

    @pytest.mark.asyncio
    async def test_customer_fetched_when_not_stored(self):
        preview = SimpleNamespace(amount_due=7900, period_end=None, currency="eur", status="draft")
        with (
            patch(GET_SUBSCRIPTION, new_callable=AsyncMock, return_value=_stripe_sub()),
            patch(PREVIEW_INVOICE, new_callable=AsyncMock, return_value=preview) as mock_preview,
        ):
            invoice = await get_upcoming_invoice(_sub(stripe_customer_id=None), now=NOW)
        mock_preview.assert_awaited_once_with("cus_1", "sub_1")
        assert invoice["amount"] == 79.0


class TestInvoiceSummary:
    @pytest.mark.asyncio
    async def test_latest_payment_and_upcoming(self):
        intent = SimpleNamespace(amount_received=4900, currency="eur", created=1772366400, status="succeeded")
        preview = SimpleNamespace(amount_due=4900, period_end=1774958400, currency="eur", status="draft")
        with (
            patch(GET_SUBSCRIPTION, new_callable=AsyncMock, return_value=_stripe_sub(intent)) as mock_get,
            patch(PREVIEW_INVOICE, new_callable=AsyncMock, return_value=preview),
        ):
            summary = await get_invoice_summary(_sub(), now=NOW)

        mock_get.assert_awaited_once_with("sub_1", expand=["latest_invoice.payment_intent"])
        assert summary["latest_payment"] == {
            "amount_paid": 49.0,
            "currency": "eur",
            "payment_date": NOW,
            "status": "succeeded",
        }
        assert summary["upcoming_invoice"]["amount"] == 49.0
        assert summary["upcoming_invoice"]["date"] == PERIOD_END

    @pytest.mark.asyncio
    async def test_preview_failure_falls_back_to_period_end(self):
        with (
            patch(GET_SUBSCRIPTION, new_callable=AsyncMock, return_value=_stripe_sub()),
            patch(PREVIEW_INVOICE, new_callable=AsyncMock, side_effect=stripe.APIConnectionError("down")),
        ):
            summary = await get_invoice_summary(_sub(), now=NOW)

        assert summary["latest_payment"] is None
        assert summary["upcoming_invoice"] == {
            "amount": None,
            "date": PERIOD_END,
            "currency": None,
            "status": None,
        }

    @pytest.mark.asyncio
    async def test_trial_uses_period_end_without_preview(self):
        with (
            patch(GET_SUBSCRIPTION, new_callable=AsyncMock, return_value=_stripe_sub()),
            patch(PREVIEW_INVOICE, new_callable=AsyncMock) as mock_preview,
        ):
            summary = await get_invoice_summary(_sub(trial_ends_at=NOW + timedelta(days=3)), now=NOW)
        mock_preview.assert_not_awaited()
        assert summary["upcoming_invoice"]["date"] == PERIOD_END
