"""
Tests for token handling and the internal service secret.
"""

from datetime import timedelta

import pytest
from jose import jwt

from core.config import settings
from core.security import (
    TOKEN_AUDIENCE,
    TOKEN_ISSUER,
    create_access_token,
    decode_token,
    verify_internal_secret,
)


@pytest.mark.unit
class TestAccessTokens:
    def test_round_trip(self) -> None:
        payload = decode_token(create_access_token("account-1"), expected_type="access")

        assert payload is not None
        assert payload["sub"] == "account-1"
        assert payload["iss"] == TOKEN_ISSUER
        assert payload["aud"] == TOKEN_AUDIENCE

    def test_tokens_are_unique(self) -> None:
        assert create_access_token("account-1") != create_access_token("account-1")

    def test_expired_token(self) -> None:
        token = create_access_token("account-1", expires_delta=timedelta(seconds=-1))

        assert decode_token(token) is None

    def test_wrong_type(self) -> None:
        assert decode_token(create_access_token("account-1"), expected_type="refresh") is None

    def test_wrong_signature(self) -> None:
        token = jwt.encode(
            {"sub": "account-1", "type": "access", "iss": TOKEN_ISSUER, "aud": TOKEN_AUDIENCE},
            "some-other-key",
            algorithm=settings.JWT_ALGORITHM,
        )

        assert decode_token(token) is None

    def test_admin_claim_is_not_trusted(self) -> None:
        # Capabilities are read from the stored account, never from claims
        token = create_access_token("account-1")

        assert "is_admin" not in decode_token(token)

    def test_garbage(self) -> None:
        assert decode_token("not-a-jwt") is None


@pytest.mark.unit
class TestInternalSecret:
    def test_matching_secret(self) -> None:
        assert verify_internal_secret(settings.INTERNAL_API_SECRET) is True

    @pytest.mark.parametrize("provided", [None, "", "wrong-secret"])
    def test_rejected(self, provided) -> None:
        assert verify_internal_secret(provided) is False

    def test_unset_secret_rejects_everything(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "INTERNAL_API_SECRET", "not-set")

        assert verify_internal_secret("not-set") is False
