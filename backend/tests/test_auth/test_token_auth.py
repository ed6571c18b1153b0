"""Tests for identity-provider token verification and the cron secret check."""

import uuid
from datetime import timedelta

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from jose import JWTError, jwt

from snapparchive.auth.dependencies import get_current_account, verify_cron_secret
from snapparchive.auth.jwt import create_access_token, decode_token
from snapparchive.config import settings


def _bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestDecodeToken:
    def test_round_trip_claims(self):
        token = create_access_token("acc-1", email="owner@test.com")
        payload = decode_token(token)
        assert payload["sub"] == "acc-1"
        assert payload["email"] == "owner@test.com"
        assert payload["aud"] == "authenticated"

    def test_expired_token_rejected(self):
        token = create_access_token("acc-1", expires_delta=timedelta(seconds=-10))
        with pytest.raises(JWTError):
            decode_token(token)

    def test_wrong_audience_rejected(self):
        token = jwt.encode(
            {"sub": "acc-1", "aud": "anon"},
            settings.supabase_jwt_secret,
            algorithm=settings.jwt_algorithm,
        )
        with pytest.raises(JWTError):
            decode_token(token)

    def test_wrong_secret_rejected(self):
        token = jwt.encode({"sub": "acc-1", "aud": "authenticated"}, "not-the-secret", algorithm="HS256")
        with pytest.raises(JWTError):
            decode_token(token)


class TestGetCurrentAccount:
    @pytest.mark.asyncio
    async def test_valid_token(self):
        account_id = uuid.uuid4()
        account = await get_current_account(_bearer(create_access_token(str(account_id), email="a@test.com")))
        assert account.id == account_id
        assert account.email == "a@test.com"

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_account(None)
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_garbage_token(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_account(_bearer("not-a-jwt"))
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_non_uuid_subject(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_account(_bearer(create_access_token("not-a-uuid")))
        assert exc_info.value.status_code == 401


class TestVerifyCronSecret:
    @pytest.mark.asyncio
    async def test_accepts_matching_secret(self, cron_secret):
        await verify_cron_secret(f"Bearer {cron_secret}")

    @pytest.mark.asyncio
    async def test_rejects_wrong_secret(self, cron_secret):
        with pytest.raises(HTTPException) as exc_info:
            await verify_cron_secret("Bearer wrong")
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_rejects_missing_header(self, cron_secret):
        with pytest.raises(HTTPException):
            await verify_cron_secret(None)

    @pytest.mark.asyncio
    async def test_rejects_when_secret_unset(self, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", "")
        with pytest.raises(HTTPException):
            await verify_cron_secret("Bearer ")
