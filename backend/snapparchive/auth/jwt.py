"""Verification of identity-provider (Supabase) access tokens."""

from datetime import datetime, timedelta, timezone

from jose import jwt

from snapparchive.config import settings


def decode_token(token: str) -> dict:
    """Decode and verify an access token issued by the identity provider.

    Args:
        token: Encoded JWT string from the ``Authorization`` header.

    Returns:
        Decoded payload dictionary.

    Raises:
        jose.JWTError: If the token is invalid, expired, malformed or issued
            for another audience.
    """
    return jwt.decode(
        token,
        settings.supabase_jwt_secret,
        algorithms=[settings.jwt_algorithm],
        audience=settings.supabase_jwt_audience,
    )


def create_access_token(account_id: str, email: str | None = None, expires_delta: timedelta | None = None) -> str:
    """Create a token shaped like the identity provider's.

    Used by tests and local tooling; production tokens come from Supabase.
    """
    now = datetime.now(timezone.utc)
    payload: dict = {
        "sub": account_id,
        "aud": settings.supabase_jwt_audience,
        "role": "authenticated",
        "iat": now,
        "exp": now + (expires_delta or timedelta(hours=1)),
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.supabase_jwt_secret, algorithm=settings.jwt_algorithm)
