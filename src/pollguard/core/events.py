"""
Application lifecycle event handlers.

Opens and closes the database engine when PostgreSQL storage is configured.
"""

from typing import Callable

import structlog
from fastapi import FastAPI

from pollguard.core.config import StorageBackend, settings
from pollguard.db.session import close_db, init_db

logger = structlog.get_logger(__name__)


def create_start_app_handler(app: FastAPI) -> Callable:
    """Create startup event handler."""

    async def start_app() -> None:
        logger.info("pollguard_starting", storage=settings.FRAUD_STORAGE_BACKEND.value)

        if settings.FRAUD_STORAGE_BACKEND == StorageBackend.POSTGRES:
            await init_db()
            logger.info("database_initialized")
        else:
            logger.warning("in_memory_storage_enabled", env=settings.APP_ENV)

        logger.info(
            "pollguard_started",
            failure_policy=settings.FRAUD_FAILURE_POLICY.value,
            identity_window=settings.FRAUD_IDENTITY_WINDOW.value,
            signed_captcha=bool(settings.CAPTCHA_SIGNING_KEY),
        )

    return start_app


def create_stop_app_handler(app: FastAPI) -> Callable:
    """Create shutdown event handler."""

    async def stop_app() -> None:
        logger.info("pollguard_stopping")

        if settings.FRAUD_STORAGE_BACKEND == StorageBackend.POSTGRES:
            await close_db()

        logger.info("pollguard_stopped")

    return stop_app
