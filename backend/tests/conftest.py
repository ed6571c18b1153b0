"""Shared test configuration and fixtures.

Each test gets its own SQLite database file (via ``aiosqlite``) with the
schema created from the models, so tests are fully isolated and several
sessions can work on the same data the way request handlers, webhooks and
the sweep do in production.
"""

import dataclasses
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from snapparchive.auth.jwt import create_access_token
from snapparchive.billing.dependencies import get_notifier
from snapparchive.billing.plans import PLANS
from snapparchive.config import settings
from snapparchive.database import Base, get_db, get_session_factory
from snapparchive.main import app
from snapparchive.models import Subscription
from snapparchive.services.rate_limit import limiter
from snapparchive.services.subscription_store import SubscriptionStore

TEST_CRON_SECRET = "test-cron-secret"


# ---------------------------------------------------------------------------
# Per-test database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create a fresh SQLite database with all tables for one test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for arranging test data. Commit before handing control to code that opens its own sessions."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(db_session: AsyncSession) -> SubscriptionStore:
    return SubscriptionStore(db_session)


@pytest.fixture
def make_subscription(db_session: AsyncSession) -> Callable[..., Awaitable[Subscription]]:
    """Factory that inserts and commits a subscription row."""

    async def _make(account_id: uuid.UUID | None = None, **fields) -> Subscription:
        fields.setdefault("plan", "pro")
        fields.setdefault("status", "active")
        fields.setdefault("auto_renew", True)
        subscription = Subscription(account_id=account_id or uuid.uuid4(), **fields)
        db_session.add(subscription)
        await db_session.commit()
        return subscription

    return _make


@pytest.fixture
def load_subscription(session_factory) -> Callable[[uuid.UUID], Awaitable[Subscription | None]]:
    """Read the current row through a new session, bypassing any identity map."""

    async def _load(account_id: uuid.UUID) -> Subscription | None:
        async with session_factory() as session:
            return await SubscriptionStore(session).get_by_account(account_id)

    return _load


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


@pytest.fixture
def notifier() -> AsyncMock:
    """Stands in for the email notifier; records delivered notifications."""
    return AsyncMock()


@pytest.fixture
def cron_secret(monkeypatch) -> str:
    monkeypatch.setattr(settings, "cron_secret", TEST_CRON_SECRET)
    return TEST_CRON_SECRET


@pytest_asyncio.fixture
async def client(session_factory, notifier) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to the per-test database."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_notifier] = lambda: notifier
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()
    limiter.reset()


# ---------------------------------------------------------------------------
# Convenience fixtures: authenticated account
# ---------------------------------------------------------------------------


@pytest.fixture
def account_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def auth_headers(account_id: uuid.UUID) -> dict[str, str]:
    """Return Authorization headers carrying an identity-provider token for the test account."""
    token = create_access_token(str(account_id), email=f"owner-{account_id.hex[:8]}@test.com")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def stripe_prices(monkeypatch) -> dict[str, str]:
    """Configure test Stripe price ids on the paid plans."""
    prices = {"basic": "price_basic_test", "pro": "price_pro_test", "enterprise": "price_enterprise_test"}
    for name, price_id in prices.items():
        monkeypatch.setitem(PLANS, name, dataclasses.replace(PLANS[name], stripe_price_id=price_id))
    return prices
