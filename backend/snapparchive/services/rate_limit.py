"""Per-account rate limiter instance for SlowAPI."""

from fastapi import Request
from jose import JWTError
from slowapi import Limiter
from slowapi.util import get_remote_address

from snapparchive.auth.jwt import decode_token
from snapparchive.config import settings


def account_key(request: Request) -> str:
    """Key requests by the bearer token's account; anonymous callers by client address."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        try:
            sub = decode_token(token).get("sub")
        except JWTError:
            sub = None
        if sub:
            return f"account:{sub}"
    return get_remote_address(request)


def billing_write_limit() -> str:
    """Limit string for billing writes, read on every request so settings changes apply."""
    return f"{settings.rate_limit_max_requests}/{settings.rate_limit_window_seconds} seconds"


# Fixed window per account; in-memory unless RATE_LIMIT_STORAGE_URI points at Redis
limiter = Limiter(
    key_func=account_key,
    storage_uri=settings.rate_limit_storage_uri,
    headers_enabled=True,
)
