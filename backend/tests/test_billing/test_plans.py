"""Tests for plan definitions and the Stripe price mapping."""

from snapparchive.billing.plans import (
    FALLBACK_PLAN,
    PAID_PLAN_NAMES,
    get_plan,
    get_plan_by_price_id,
    is_paid_plan,
    resolve_plan,
)


class TestPlans:
    def test_paid_plans(self):
        assert PAID_PLAN_NAMES == {"basic", "pro", "enterprise"}
        assert is_paid_plan("pro") is True
        assert is_paid_plan("trial") is False

    def test_unknown_plan_name_defaults_to_trial(self):
        assert get_plan("free").name == "trial"

    def test_price_lookup(self, stripe_prices):
        assert get_plan_by_price_id("price_enterprise_test") == "enterprise"
        assert get_plan_by_price_id("price_unknown") is None

    def test_resolve_unknown_price_falls_back(self, stripe_prices, caplog):
        assert resolve_plan("price_unknown") == FALLBACK_PLAN == "basic"
        assert "price_unknown" in caplog.text

    def test_resolve_missing_price_falls_back(self):
        assert resolve_plan(None) == "basic"
