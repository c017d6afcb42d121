"""
Tests for the structured trust & safety errors.
"""

import pytest

from core.exceptions import (
    AccountNotFound,
    CapabilityDenied,
    ConflictingPendingSession,
    InvalidTransition,
    RateLimitExceeded,
    StaleStateConflict,
    TrustSafetyError,
)


@pytest.mark.unit
class TestTrustSafetyErrors:
    @pytest.mark.parametrize(
        "error,status,code",
        [
            (AccountNotFound("missing"), 404, "account_not_found"),
            (InvalidTransition("blocked", "soft_verified", "liveness_passed"), 409, "invalid_transition"),
            (RateLimitExceeded("account_limit", 120), 429, "rate_limit_exceeded"),
            (ConflictingPendingSession("pending"), 409, "pending_session_exists"),
            (CapabilityDenied("nope"), 403, "capability_denied"),
            (StaleStateConflict("account-1", 3), 409, "stale_state"),
        ],
    )
    def test_status_and_code(self, error: TrustSafetyError, status: int, code: str) -> None:
        assert isinstance(error, TrustSafetyError)
        assert error.http_status == status
        assert error.to_dict()["error"] == code

    def test_public_payload_hides_internal_detail(self) -> None:
        error = InvalidTransition("blocked", "soft_verified", "liveness_passed")

        assert "blocked" in str(error)
        assert "blocked" not in error.to_dict()["detail"]

    def test_rate_limit_carries_retry_after(self) -> None:
        error = RateLimitExceeded("device_limit", 540)

        assert error.reason == "device_limit"
        assert error.to_dict()["retry_after_seconds"] == 540

    def test_stale_state_context(self) -> None:
        error = StaleStateConflict("account-1", 7)

        assert error.context == {"account_id": "account-1", "expected_version": 7}
