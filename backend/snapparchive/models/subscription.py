"""Subscription model — one billing record per account."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Integer, String, false, true
from sqlalchemy.orm import Mapped, mapped_column

from snapparchive.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Plan(str, enum.Enum):
    """Billing tier, independent of status."""

    TRIAL = "trial"
    BASIC = "basic"
    PRO = "pro"
    ENTERPRISE = "enterprise"

    def __str__(self) -> str:
        return self.value


class SubscriptionStatus(str, enum.Enum):
    """Coarse lifecycle state reported to the rest of the system."""

    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Tracks an account's Stripe subscription, trial window and renewal intent."""

    __tablename__ = "subscriptions"
    __mapper_args__ = {"eager_defaults": True}

    # Identity comes from the external auth provider, so there is no FK here.
    account_id: Mapped[uuid.UUID] = mapped_column(unique=True, nullable=False, index=True)

    # Stripe identifiers
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    # Last Checkout session applied; a new session id means its trial email is still owed.
    stripe_checkout_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)

    # Plan & status
    plan: Mapped[str] = mapped_column(String(50), nullable=False, default=Plan.TRIAL.value)
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=SubscriptionStatus.ACTIVE.value, index=True
    )

    # Trial and billing period (naive UTC)
    trial_ends_at: Mapped[datetime | None] = mapped_column(nullable=True)
    current_period_start: Mapped[datetime | None] = mapped_column(nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(nullable=True)

    # Renewal intent
    auto_renew: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    auto_renew_off_at: Mapped[datetime | None] = mapped_column(nullable=True, index=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Latest payment attempt
    last_payment_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_payment_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_payment_currency: Mapped[str | None] = mapped_column(String(10), nullable=True)
    payment_failed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    payment_failure_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, account_id={self.account_id}, plan={self.plan}, "
            f"status={self.status}, auto_renew={self.auto_renew})>"
        )
