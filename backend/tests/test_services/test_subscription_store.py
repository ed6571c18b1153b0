"""Tests for the subscription record store."""

import uuid
from datetime import datetime, timedelta

import pytest

from snapparchive.services.subscription_store import SubscriptionStore

NOW = datetime(2026, 3, 1, 12, 0, 0)
GRACE = timedelta(days=2)


class TestLookups:
    @pytest.mark.asyncio
    async def test_get_by_account(self, store: SubscriptionStore, make_subscription):
        sub = await make_subscription()
        found = await store.get_by_account(sub.account_id)
        assert found is not None
        assert found.id == sub.id

    @pytest.mark.asyncio
    async def test_get_by_account_missing(self, store: SubscriptionStore):
        assert await store.get_by_account(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_get_by_provider_customer_ref(self, store: SubscriptionStore, make_subscription):
        sub = await make_subscription(stripe_customer_id="cus_lookup")
        found = await store.get_by_provider_customer_ref("cus_lookup", for_update=True)
        assert found is not None
        assert found.account_id == sub.account_id
        assert await store.get_by_provider_customer_ref("cus_other") is None


class TestWrites:
    @pytest.mark.asyncio
    async def test_upsert_creates_one_row_per_account(self, store: SubscriptionStore, load_subscription):
        account_id = uuid.uuid4()
        first = await store.upsert(account_id, plan="basic", stripe_customer_id="cus_1")
        second = await store.upsert(account_id, plan="pro")
        await store.commit()

        assert first.id == second.id
        loaded = await load_subscription(account_id)
        assert loaded.plan == "pro"
        assert loaded.stripe_customer_id == "cus_1"
        assert loaded.status == "active"
        assert loaded.auto_renew is True

    @pytest.mark.asyncio
    async def test_update_missing_row_returns_none(self, store: SubscriptionStore):
        assert await store.update(uuid.uuid4(), plan="pro") is None

    @pytest.mark.asyncio
    async def test_update_refreshes_updated_at(self, store: SubscriptionStore, make_subscription):
        sub = await make_subscription()
        before = sub.updated_at
        updated = await store.update(sub.account_id, auto_renew=False)
        assert updated.auto_renew is False
        assert updated.updated_at is not None
        assert before is None or updated.updated_at >= before

    @pytest.mark.asyncio
    async def test_immutable_fields_rejected(self, store: SubscriptionStore, make_subscription):
        sub = await make_subscription()
        with pytest.raises(ValueError):
            await store.update(sub.account_id, account_id=uuid.uuid4())

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, store: SubscriptionStore, make_subscription):
        sub = await make_subscription()
        with pytest.raises(AttributeError):
            await store.update(sub.account_id, max_properties=5)


class TestCancellationCandidates:
    @pytest.mark.asyncio
    async def test_selects_only_elapsed_active_auto_renew_off(self, store: SubscriptionStore, make_subscription):
        due = await make_subscription(auto_renew=False, auto_renew_off_at=NOW - timedelta(days=3))
        await make_subscription(auto_renew=False, auto_renew_off_at=NOW - timedelta(days=1))
        await make_subscription(auto_renew=True, auto_renew_off_at=None)
        await make_subscription(auto_renew=False, auto_renew_off_at=None)
        await make_subscription(status="cancelled", auto_renew=False, auto_renew_off_at=NOW - timedelta(days=9))
        await make_subscription(status="expired", auto_renew=False, auto_renew_off_at=NOW - timedelta(days=9))

        candidates = await store.list_cancellation_candidates(NOW, GRACE)
        assert [c.id for c in candidates] == [due.id]

    @pytest.mark.asyncio
    async def test_margin_widens_selection(self, store: SubscriptionStore, make_subscription):
        almost = await make_subscription(
            auto_renew=False,
            auto_renew_off_at=NOW - GRACE + timedelta(minutes=2),
        )
        assert await store.list_cancellation_candidates(NOW, GRACE) == []
        candidates = await store.list_cancellation_candidates(NOW, GRACE, timedelta(minutes=5))
        assert [c.id for c in candidates] == [almost.id]

    @pytest.mark.asyncio
    async def test_ordered_by_anchor(self, store: SubscriptionStore, make_subscription):
        newer = await make_subscription(auto_renew=False, auto_renew_off_at=NOW - timedelta(days=3))
        older = await make_subscription(auto_renew=False, auto_renew_off_at=NOW - timedelta(days=6))
        candidates = await store.list_cancellation_candidates(NOW, GRACE)
        assert [c.id for c in candidates] == [older.id, newer.id]

    @pytest.mark.asyncio
    async def test_count_grace_pending(self, store: SubscriptionStore, make_subscription):
        await make_subscription(auto_renew=False, auto_renew_off_at=NOW - timedelta(days=3))
        await make_subscription(auto_renew=False, auto_renew_off_at=NOW - timedelta(days=1))
        await make_subscription(auto_renew=False, auto_renew_off_at=NOW + timedelta(days=10))
        await make_subscription(auto_renew=True, auto_renew_off_at=None)
        await make_subscription(status="cancelled", auto_renew=False, auto_renew_off_at=NOW - timedelta(days=1))

        assert await store.count_grace_pending(NOW, GRACE) == 2
        assert await store.count_grace_pending(NOW, GRACE, timedelta(days=1, minutes=5)) == 1
