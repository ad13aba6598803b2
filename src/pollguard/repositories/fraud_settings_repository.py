"""Fraud settings repository (read-only)."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pollguard.core.exceptions import DatastoreError
from pollguard.models.fraud_settings import PollFraudSettings
from pollguard.schemas.fraud import FraudSettings


class FraudSettingsRepository:
    """Repository for per-poll fraud settings."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_poll(self, poll_id: str) -> Optional[FraudSettings]:
        """Get the settings row for a poll, if administrators created one."""
        try:
            result = await self.db.execute(
                select(PollFraudSettings).where(PollFraudSettings.poll_id == poll_id)
            )
        except SQLAlchemyError as e:
            raise DatastoreError(f"fraud settings read failed: {e}") from e

        row = result.scalar_one_or_none()
        return FraudSettings.model_validate(row) if row is not None else None
