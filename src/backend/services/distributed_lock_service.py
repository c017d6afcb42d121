"""
Distributed Lock Service

Coordinates the retention and SLA sweeps across replicas. A lock is a row in
``distributed_locks`` taken with an optimistic version update, so only one
instance runs a given sweep per tick and a crashed holder blocks the next run
for at most the lock timeout.
"""

import os
import socket
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, AsyncGenerator, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from db.types import utcnow
from models.distributed_lock import DistributedLock

logger = structlog.get_logger(__name__)

# How long a lock is valid before it is considered stale
DEFAULT_LOCK_TIMEOUT_SECONDS = 300

_instance_id: Optional[str] = None


def get_instance_id() -> str:
    """Identifier for this application instance (hostname:pid)."""
    global _instance_id
    if _instance_id is None:
        _instance_id = f"{socket.gethostname()}:{os.getpid()}"
    return _instance_id


def _rowcount(result: Any) -> int:
    return getattr(result, "rowcount", 0) or 0


class DistributedLockService:
    """
    Named job locks.

    Usage:
        async with DistributedLockService.acquire_lock(db, LOCK_RETENTION_SWEEP) as acquired:
            if acquired:
                ...
    """

    @staticmethod
    async def ensure_lock_exists(db: AsyncSession, lock_name: str) -> DistributedLock:
        """Get the lock row, creating it on first use."""
        result = await db.execute(
            select(DistributedLock)
            .where(DistributedLock.lock_name == lock_name)
            .execution_options(populate_existing=True)
        )
        lock = result.scalar_one_or_none()
        if lock is not None:
            return lock

        lock = DistributedLock(lock_name=lock_name, is_locked=False, version=0)
        db.add(lock)
        try:
            await db.commit()
        except IntegrityError:
            # Another replica created it first
            await db.rollback()
            result = await db.execute(select(DistributedLock).where(DistributedLock.lock_name == lock_name))
            return result.scalar_one()

        await db.refresh(lock)
        logger.info("lock_record_created", lock_name=lock_name)
        return lock

    @staticmethod
    async def try_acquire(
        db: AsyncSession,
        lock_name: str,
        timeout_seconds: int = DEFAULT_LOCK_TIMEOUT_SECONDS,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Attempt to acquire a lock; expired locks are taken over.

        Returns:
            True if lock acquired, False otherwise
        """
        instance_id = get_instance_id()
        now = now or utcnow()

        try:
            lock = await DistributedLockService.ensure_lock_exists(db, lock_name)

            if lock.is_locked and not lock.is_expired(now):
                logger.debug("lock_held", lock_name=lock_name, locked_by=lock.locked_by, expires_at=lock.expires_at)
                return False

            old_version = lock.version
            result = await db.execute(
                update(DistributedLock)
                .where(
                    DistributedLock.lock_name == lock_name,
                    DistributedLock.version == old_version,
                )
                .values(
                    is_locked=True,
                    locked_by=instance_id,
                    locked_at=now,
                    expires_at=now + timedelta(seconds=timeout_seconds),
                    version=old_version + 1,
                )
                .execution_options(synchronize_session=False)
            )

            if _rowcount(result) == 1:
                await db.commit()
                logger.info("lock_acquired", lock_name=lock_name, instance_id=instance_id)
                return True

            await db.rollback()
            logger.debug("lock_acquire_race_lost", lock_name=lock_name)
            return False

        except SQLAlchemyError as e:
            logger.error("lock_acquire_failed", lock_name=lock_name, error=str(e))
            await db.rollback()
            return False

    @staticmethod
    async def release(
        db: AsyncSession,
        lock_name: str,
        success: bool = True,
        result_notes: Optional[str] = None,
    ) -> bool:
        """Release a lock held by this instance and record the run outcome."""
        instance_id = get_instance_id()

        try:
            result = await db.execute(
                update(DistributedLock)
                .where(
                    DistributedLock.lock_name == lock_name,
                    DistributedLock.locked_by == instance_id,
                )
                .values(
                    is_locked=False,
                    locked_by=None,
                    locked_at=None,
                    expires_at=None,
                    last_run_at=utcnow(),
                    last_run_result=result_notes or ("success" if success else "failed"),
                )
                .execution_options(synchronize_session=False)
            )

            if _rowcount(result) == 1:
                await db.commit()
                logger.info("lock_released", lock_name=lock_name, instance_id=instance_id)
                return True

            await db.rollback()
            logger.warning("lock_release_not_held", lock_name=lock_name, instance_id=instance_id)
            return False

        except SQLAlchemyError as e:
            logger.error("lock_release_failed", lock_name=lock_name, error=str(e))
            await db.rollback()
            return False

    @staticmethod
    @asynccontextmanager
    async def acquire_lock(
        db: AsyncSession,
        lock_name: str,
        timeout_seconds: int = DEFAULT_LOCK_TIMEOUT_SECONDS,
    ) -> AsyncGenerator[bool, None]:
        """
        Acquire for the duration of the block; release with the outcome.

        Yields:
            True if lock acquired, False otherwise
        """
        acquired = await DistributedLockService.try_acquire(db, lock_name, timeout_seconds)
        success = True
        result_notes = None

        try:
            yield acquired
        except Exception as e:
            success = False
            result_notes = str(e)[:500]
            raise
        finally:
            if acquired:
                await DistributedLockService.release(db, lock_name, success, result_notes)

    @staticmethod
    async def get_all_locks(db: AsyncSession) -> list[DistributedLock]:
        """All registered locks and their status."""
        result = await db.execute(select(DistributedLock).order_by(DistributedLock.lock_name))
        return list(result.scalars().all())


# Lock names for the sweep jobs
LOCK_RETENTION_SWEEP = "retention_sweep"
LOCK_SLA_SWEEP = "sla_sweep"
