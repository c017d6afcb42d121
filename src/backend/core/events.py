"""
Application lifecycle event handlers.

Manages startup and shutdown of the database engine and the background
sweep scheduler.
"""

from typing import Callable

import structlog
from fastapi import FastAPI

from core.config import settings
from db.session import close_db, init_db

logger = structlog.get_logger(__name__)


def create_start_app_handler(app: FastAPI) -> Callable:
    """Create startup event handler."""

    async def start_app() -> None:
        logger.info("app_starting", app_name=settings.APP_NAME, env=settings.APP_ENV)

        await init_db()

        # Retention purge and SLA sweep
        if settings.ENABLE_BACKGROUND_JOBS:
            try:
                from services.background_scheduler import start_scheduler

                await start_scheduler()
            except Exception as e:
                logger.exception("scheduler_start_failed", error=str(e))
                logger.warning("evidence_retention_and_sla_sweeps_disabled")

        logger.info("app_started", app_name=settings.APP_NAME)

    return start_app


def create_stop_app_handler(app: FastAPI) -> Callable:
    """Create shutdown event handler."""

    async def stop_app() -> None:
        logger.info("app_stopping", app_name=settings.APP_NAME)

        try:
            from services.background_scheduler import stop_scheduler

            await stop_scheduler()
        except Exception as e:
            logger.warning("scheduler_stop_failed", error=str(e))

        await close_db()
        logger.info("app_stopped", app_name=settings.APP_NAME)

    return stop_app
