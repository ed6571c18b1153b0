"""SQLAlchemy models for SnappArchive billing.

All models are imported here so that Alembic's autogenerate can discover
them via Base.metadata. If you add a new model, import it in this file.
"""

from snapparchive.models.provider_event import ProviderEvent
from snapparchive.models.subscription import Plan, Subscription, SubscriptionStatus

__all__ = [
    "Plan",
    "ProviderEvent",
    "Subscription",
    "SubscriptionStatus",
]
