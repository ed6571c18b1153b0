"""ProviderEvent model — ledger of Stripe webhook events already applied."""

from datetime import datetime

from sqlalchemy import String, func
from sqlalchemy.orm import Mapped, mapped_column

from snapparchive.database import Base


class ProviderEvent(Base):
    """One row per processed Stripe event id."""

    __tablename__ = "provider_events"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    provider_created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    received_at: Mapped[datetime] = mapped_column(server_default=func.now())

    def __repr__(self) -> str:
        return f"<ProviderEvent(event_id={self.event_id!r}, event_type={self.event_type!r})>"
