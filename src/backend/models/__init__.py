"""Database models module."""

from models.account import CURRENT_STATE_SCHEMA_VERSION, Account, EnforcementLevel, VerificationState
from models.activity import ActivityEvent, ActivityKind
from models.audit import AdminAction, AdminAuditLogEntry
from models.behavior_flag import FLAG_SEVERITY, BehaviorFlag, FlagSeverity, FlagType
from models.device import DeviceBinding, DeviceFingerprint
from models.distributed_lock import DistributedLock
from models.state_transition import StateTransition, TransitionTrigger
from models.verification import (
    AttemptResult,
    SessionPurpose,
    SessionStatus,
    VerificationAttempt,
    VerificationSession,
)

__all__ = [
    "CURRENT_STATE_SCHEMA_VERSION",
    "Account",
    "EnforcementLevel",
    "VerificationState",
    "ActivityEvent",
    "ActivityKind",
    "AdminAction",
    "AdminAuditLogEntry",
    "FLAG_SEVERITY",
    "BehaviorFlag",
    "FlagSeverity",
    "FlagType",
    "DeviceBinding",
    "DeviceFingerprint",
    "DistributedLock",
    "StateTransition",
    "TransitionTrigger",
    "AttemptResult",
    "SessionPurpose",
    "SessionStatus",
    "VerificationAttempt",
    "VerificationSession",
]
