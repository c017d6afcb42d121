"""
Background Scheduler Service

Runs the periodic sweeps with APScheduler:
- Evidence retention purge (hourly by default)
- Review SLA overdue sweep (every 15 minutes by default)

Each job takes a distributed lock so only one replica sweeps per tick. This
runs in-process with the FastAPI application.
"""

import logging
from datetime import timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.config import settings
from db.session import get_session_maker
from services.distributed_lock_service import (
    LOCK_RETENTION_SWEEP,
    LOCK_SLA_SWEEP,
    DistributedLockService,
)
from services.retention_service import RetentionService

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None


async def retention_sweep_job() -> None:
    """Purge verification evidence past its retention window."""
    logger.info("Starting evidence retention sweep...")

    try:
        session_maker = get_session_maker()
        async with session_maker() as lock_db:
            async with DistributedLockService.acquire_lock(lock_db, LOCK_RETENTION_SWEEP) as acquired:
                if not acquired:
                    logger.info("Retention sweep running on another instance, skipping")
                    return
                async with session_maker() as db:
                    purged = await RetentionService(db).purge_expired_evidence()
                logger.info(f"Retention sweep completed: purged={purged}")
    except Exception as e:
        logger.error(f"Retention sweep job failed: {e}", exc_info=True)


async def sla_sweep_job() -> None:
    """Mark review sessions past their SLA deadline as overdue."""
    logger.info("Starting review SLA sweep...")

    try:
        session_maker = get_session_maker()
        async with session_maker() as lock_db:
            async with DistributedLockService.acquire_lock(lock_db, LOCK_SLA_SWEEP) as acquired:
                if not acquired:
                    logger.info("SLA sweep running on another instance, skipping")
                    return
                async with session_maker() as db:
                    overdue = await RetentionService(db).mark_overdue_reviews()
                logger.info(f"SLA sweep completed: newly_overdue={len(overdue)}")
    except Exception as e:
        logger.error(f"SLA sweep job failed: {e}", exc_info=True)


def get_scheduler() -> AsyncIOScheduler:
    """Get the global scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(timezone=timezone.utc)
    return _scheduler


async def start_scheduler() -> None:
    """Start the background scheduler with all jobs."""
    scheduler = get_scheduler()

    if scheduler.running:
        logger.info("Scheduler already running")
        return

    logger.info("Configuring background scheduler...")

    scheduler.add_job(
        retention_sweep_job,
        trigger=IntervalTrigger(minutes=settings.RETENTION_SWEEP_INTERVAL_MINUTES),
        id="retention_sweep",
        name="Evidence Retention Sweep",
        replace_existing=True,
        max_instances=1,
    )
    logger.info(f"Added retention sweep job (every {settings.RETENTION_SWEEP_INTERVAL_MINUTES} minutes)")

    scheduler.add_job(
        sla_sweep_job,
        trigger=IntervalTrigger(minutes=settings.SLA_SWEEP_INTERVAL_MINUTES),
        id="sla_sweep",
        name="Review SLA Sweep",
        replace_existing=True,
        max_instances=1,
    )
    logger.info(f"Added SLA sweep job (every {settings.SLA_SWEEP_INTERVAL_MINUTES} minutes)")

    scheduler.start()
    logger.info("Background scheduler started")


async def stop_scheduler() -> None:
    """Stop the background scheduler gracefully."""
    global _scheduler

    if _scheduler and _scheduler.running:
        logger.info("Stopping background scheduler...")
        _scheduler.shutdown(wait=True)
        logger.info("Background scheduler stopped")

    _scheduler = None


def get_scheduler_status() -> dict:
    """Job ids with their next run times, for the admin status endpoint."""
    scheduler = _scheduler
    if scheduler is None or not scheduler.running:
        return {"running": False, "jobs": []}
    return {
        "running": True,
        "jobs": [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in scheduler.get_jobs()
        ],
    }
