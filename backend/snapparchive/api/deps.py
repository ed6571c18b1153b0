"""Shared API dependencies — single import point for all routers.

Re-exports database session, authentication and billing dependencies so that
router modules can import everything they need from one place::

    from snapparchive.api.deps import get_db, get_current_account
"""

from snapparchive.auth.dependencies import (
    Account,
    get_current_account,
    verify_cron_secret,
)
from snapparchive.billing.dependencies import (
    get_access_decision,
    get_notifier,
    get_subscription_store,
    require_write_access,
)
from snapparchive.database import get_db, get_session_factory

__all__ = [
    "Account",
    "get_db",
    "get_session_factory",
    "get_current_account",
    "verify_cron_secret",
    "get_subscription_store",
    "get_notifier",
    "get_access_decision",
    "require_write_access",
]
