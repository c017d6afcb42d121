"""Schemas module initialization."""

from schemas.account import AccountCreate, AccountState, ContactChannel, ContactVerified, ProfileSignals
from schemas.activity import ActivityEvaluation, ActivityEventIn
from schemas.audit import AuditLogEntryResponse, AuditLogFilters, AuditLogPage
from schemas.device import CorrelationResult, FingerprintAck, FingerprintRegistration
from schemas.review import ReviewDecision, ReviewOutcome, ReviewQueueResponse, ReviewRequest
from schemas.verification import LivenessResult, LivenessSubmission, LivenessSubmissionResult
from schemas.visibility import VisibilityResponse

__all__ = [
    "AccountCreate",
    "AccountState",
    "ContactChannel",
    "ContactVerified",
    "ProfileSignals",
    "ActivityEvaluation",
    "ActivityEventIn",
    "AuditLogEntryResponse",
    "AuditLogFilters",
    "AuditLogPage",
    "CorrelationResult",
    "FingerprintAck",
    "FingerprintRegistration",
    "ReviewDecision",
    "ReviewOutcome",
    "ReviewQueueResponse",
    "ReviewRequest",
    "LivenessResult",
    "LivenessSubmission",
    "LivenessSubmissionResult",
    "VisibilityResponse",
]
