"""
Versioned migration of stored verification state literals.

Schema version 1 accounts carry the loosely typed statuses written by the
first mobile backend (``pending_verification``, ``verified``, ``failed``...).
Each migration step maps one schema version to the next; rows are rewritten
once, at the data-access boundary, so business logic only ever sees
``VerificationState`` members.
"""

from typing import Callable

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from models.account import CURRENT_STATE_SCHEMA_VERSION, VerificationState

logger = structlog.get_logger(__name__)


class UnknownLegacyState(ValueError):
    """A stored literal has no mapping for its schema version."""

    def __init__(self, literal: str, schema_version: int):
        super().__init__(f"No mapping for state {literal!r} at schema version {schema_version}")
        self.literal = literal
        self.schema_version = schema_version


# Version 1 -> 2. Pending statuses that were waiting on a human become
# manual_review; automatic-pending ones never passed a liveness gate.
V1_STATE_MAP: dict[str, VerificationState] = {
    "unverified": VerificationState.UNVERIFIED,
    "pending_verification": VerificationState.UNVERIFIED,
    "pending_auto": VerificationState.UNVERIFIED,
    "pending_manual": VerificationState.MANUAL_REVIEW,
    "pending": VerificationState.MANUAL_REVIEW,
    "verified": VerificationState.SOFT_VERIFIED,
    "rejected": VerificationState.REVERIFY_REQUIRED,
    "failed": VerificationState.REVERIFY_REQUIRED,
}


def _migrate_v1(literal: str) -> str:
    try:
        return V1_STATE_MAP[literal].value
    except KeyError:
        raise UnknownLegacyState(literal, 1) from None


# from_version -> step producing the literal for from_version + 1
STATE_MIGRATIONS: dict[int, Callable[[str], str]] = {
    1: _migrate_v1,
}


def migrate_state_literal(literal: str, schema_version: int) -> VerificationState:
    """
    Apply every migration step from ``schema_version`` up to the current one.

    Raises:
        UnknownLegacyState: if a step has no mapping for the literal, or the
            stored version has no registered step.
    """
    version = schema_version
    value = literal
    while version < CURRENT_STATE_SCHEMA_VERSION:
        step = STATE_MIGRATIONS.get(version)
        if step is None:
            raise UnknownLegacyState(value, version)
        value = step(value)
        version += 1

    try:
        return VerificationState(value)
    except ValueError:
        raise UnknownLegacyState(value, version) from None


async def migrate_legacy_states(conn: AsyncConnection, dry_run: bool = False) -> dict[str, int]:
    """
    Rewrite every account whose state predates the current schema version.

    Works on raw rows so legacy literals never pass through the ORM enum.
    Returns a count of rewritten rows keyed by ``"<version>:<old> -> <new>"``.
    """
    result = await conn.execute(
        text("""
            SELECT verification_state, state_schema_version, COUNT(*)
            FROM accounts
            WHERE state_schema_version < :current
            GROUP BY verification_state, state_schema_version
        """),
        {"current": CURRENT_STATE_SCHEMA_VERSION},
    )
    groups = result.all()

    # Resolve every mapping first so an unknown literal aborts before any write
    plan = [
        (literal, version, count, migrate_state_literal(literal, version))
        for literal, version, count in groups
    ]

    summary: dict[str, int] = {}
    for literal, version, count, target in plan:
        summary[f"{version}:{literal} -> {target.value}"] = count
        if dry_run:
            continue
        await conn.execute(
            text("""
                UPDATE accounts
                SET verification_state = :target, state_schema_version = :current
                WHERE verification_state = :literal AND state_schema_version = :version
            """),
            {
                "target": target.value,
                "current": CURRENT_STATE_SCHEMA_VERSION,
                "literal": literal,
                "version": version,
            },
        )

    logger.info(
        "legacy_states_migrated",
        groups=len(plan),
        rows=sum(summary.values()),
        dry_run=dry_run,
    )
    return summary
