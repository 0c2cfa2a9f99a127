"""Unit tests for admin tokens and shared-secret checks."""
from datetime import timedelta

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from unittest.mock import patch

from athwatch.core.auth import (
    create_access_token,
    decode_access_token,
    require_admin,
    verify_bearer_secret,
)
from athwatch.core.config import settings


@pytest.fixture
def jwt_secret():
    with patch.object(settings, "jwt_secret", "k" * 32):
        yield


def bearer(token):
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


# ============================================================================
# Tests for JWT tokens
# ============================================================================

@pytest.mark.unit
class TestAccessTokens:
    """Test token creation and decoding."""

    def test_round_trip(self, jwt_secret):
        """✅ Claims survive encode/decode with exp added."""
        payload = decode_access_token(create_access_token({"sub": "admin-1", "role": "admin"}))

        assert payload["sub"] == "admin-1"
        assert "exp" in payload

    def test_expired_token(self, jwt_secret):
        """❌ Expired token → 401."""
        token = create_access_token({"sub": "admin-1"}, expires_delta=timedelta(seconds=-10))

        with pytest.raises(HTTPException) as exc:
            decode_access_token(token)

        assert exc.value.status_code == 401

    def test_unconfigured_secret(self):
        """❌ No JWT secret → 503."""
        with patch.object(settings, "jwt_secret", None):
            with pytest.raises(HTTPException) as exc:
                create_access_token({"sub": "admin-1"})

        assert exc.value.status_code == 503


@pytest.mark.unit
@pytest.mark.asyncio
class TestRequireAdmin:
    """Test the admin dependency."""

    async def test_admin_passes(self, jwt_secret):
        """✅ Admin role → payload returned."""
        token = create_access_token({"sub": "admin-1", "role": "admin"})

        payload = await require_admin(bearer(token))

        assert payload["role"] == "admin"

    async def test_missing_credentials(self, jwt_secret):
        """❌ No header → 401."""
        with pytest.raises(HTTPException) as exc:
            await require_admin(None)

        assert exc.value.status_code == 401

    async def test_missing_subject(self, jwt_secret):
        """❌ Token without sub → 401."""
        token = create_access_token({"role": "admin"})

        with pytest.raises(HTTPException) as exc:
            await require_admin(bearer(token))

        assert exc.value.status_code == 401

    async def test_user_role(self, jwt_secret):
        """❌ Non-admin → 403."""
        token = create_access_token({"sub": "user-1", "role": "user"})

        with pytest.raises(HTTPException) as exc:
            await require_admin(bearer(token))

        assert exc.value.status_code == 403


# ============================================================================
# Tests for verify_bearer_secret
# ============================================================================

@pytest.mark.unit
class TestBearerSecret:
    """Test shared-secret verification."""

    def test_match(self):
        """✅ Correct secret passes."""
        verify_bearer_secret("Bearer s3cret", "s3cret")

    def test_case_insensitive_scheme(self):
        """✅ Scheme is case-insensitive."""
        verify_bearer_secret("bearer s3cret", "s3cret")

    @pytest.mark.parametrize("header", [None, "", "Bearer wrong", "Basic s3cret", "s3cret"])
    def test_mismatch(self, header):
        """❌ Missing, wrong or non-bearer → 401."""
        with pytest.raises(HTTPException) as exc:
            verify_bearer_secret(header, "s3cret")

        assert exc.value.status_code == 401

    def test_not_configured(self):
        """❌ No secret configured → 503 even with a header."""
        with pytest.raises(HTTPException) as exc:
            verify_bearer_secret("Bearer anything", None)

        assert exc.value.status_code == 503
