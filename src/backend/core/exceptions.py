"""
Typed errors for the verification & trust core.

Every failure a caller can act on is raised as one of these. Nothing here is
swallowed: the API layer renders them through a single exception handler with
a public message that never leaks internal state.
"""

from typing import Any, Optional


class TrustSafetyError(Exception):
    """Base class for all structured trust & safety errors."""

    code = "trust_safety_error"
    http_status = 400
    public_message = "This action is unavailable right now."

    def __init__(self, message: str = "", **context: Any):
        super().__init__(message or self.public_message)
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.public_message}


class AccountNotFound(TrustSafetyError):
    code = "account_not_found"
    http_status = 404
    public_message = "Account not found."


class InvalidTransition(TrustSafetyError):
    """Attempted state change is not in the transition table."""

    code = "invalid_transition"
    http_status = 409
    public_message = "This action is unavailable."

    def __init__(self, from_state: Any, to_state: Any = None, trigger: Any = None):
        super().__init__(
            f"Transition {from_state} -> {to_state} via {trigger} is not allowed",
            from_state=from_state,
            to_state=to_state,
            trigger=trigger,
        )
        self.from_state = from_state
        self.to_state = to_state
        self.trigger = trigger


class RateLimitExceeded(TrustSafetyError):
    """Verification attempt denied by the attempt limiter."""

    code = "rate_limit_exceeded"
    http_status = 429
    public_message = "Too many verification attempts. Please try again later."

    def __init__(self, reason: str, retry_after_seconds: int):
        super().__init__(f"Verification attempt denied: {reason}", reason=reason)
        self.reason = reason
        self.retry_after_seconds = retry_after_seconds

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["retry_after_seconds"] = self.retry_after_seconds
        return payload


class ConflictingPendingSession(TrustSafetyError):
    """A verification session is already pending for this account."""

    code = "pending_session_exists"
    http_status = 409
    public_message = "A verification is already in progress. Please try again later."


class CapabilityDenied(TrustSafetyError):
    """Principal lacks the capability for a privileged action."""

    code = "capability_denied"
    http_status = 403
    public_message = "This action is unavailable."


class StaleStateConflict(TrustSafetyError):
    """Account changed underneath the caller; retry against fresh state."""

    code = "stale_state"
    http_status = 409
    public_message = "This account was updated by someone else. Refresh and try again."

    def __init__(self, account_id: str, expected_version: Optional[int] = None):
        super().__init__(
            f"Account {account_id} changed concurrently (expected version {expected_version})",
            account_id=account_id,
            expected_version=expected_version,
        )
        self.account_id = account_id
        self.expected_version = expected_version
