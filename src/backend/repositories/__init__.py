"""Repository modules for database access."""

from repositories.account_repository import AccountRepository
from repositories.activity_repository import ActivityRepository
from repositories.audit_repository import AuditRepository
from repositories.device_repository import DeviceRepository
from repositories.flag_repository import FlagRepository
from repositories.transition_repository import TransitionRepository
from repositories.verification_repository import VerificationAttemptRepository, VerificationSessionRepository

__all__ = [
    "AccountRepository",
    "ActivityRepository",
    "AuditRepository",
    "DeviceRepository",
    "FlagRepository",
    "TransitionRepository",
    "VerificationAttemptRepository",
    "VerificationSessionRepository",
]
