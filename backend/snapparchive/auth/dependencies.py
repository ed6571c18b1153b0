"""FastAPI authentication dependencies for route protection."""

import hmac
import logging
import uuid
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from snapparchive.auth.jwt import decode_token
from snapparchive.config import settings

logger = logging.getLogger(__name__)

# auto_error=False so a missing header is a 401, like an invalid one
_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Account:
    """The caller as resolved by the identity provider."""

    id: uuid.UUID
    email: str | None = None


async def get_current_account(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> Account:
    """Validate the Bearer token and return the account it identifies.

    Raises:
        HTTPException 401: If the token is missing, invalid, expired, or has no usable subject.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        raise credentials_exception

    try:
        payload = decode_token(credentials.credentials)
    except JWTError:
        raise credentials_exception from None

    sub: str | None = payload.get("sub")
    if sub is None:
        raise credentials_exception

    try:
        account_id = uuid.UUID(sub)
    except ValueError:
        raise credentials_exception from None

    return Account(id=account_id, email=payload.get("email"))


async def verify_cron_secret(authorization: str | None = Header(default=None)) -> None:
    """Accept only scheduler calls carrying ``Authorization: Bearer <CRON_SECRET>``.

    Raises:
        HTTPException 401: If the secret is unset, missing or wrong.
    """
    expected = f"Bearer {settings.cron_secret}"
    if (
        not settings.cron_secret
        or authorization is None
        or not hmac.compare_digest(authorization.encode(), expected.encode())
    ):
        logger.warning("Rejected unauthenticated cron invocation")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
