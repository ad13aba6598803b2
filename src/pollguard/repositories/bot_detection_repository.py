"""Bot detection log repository."""

from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pollguard.core.exceptions import DatastoreError
from pollguard.models.bot_detection import PollBotDetectionLog
from pollguard.schemas.fraud import BotDetectionLogEntry


class BotDetectionLogRepository:
    """Repository for bot detection audit rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, entry: BotDetectionLogEntry) -> BotDetectionLogEntry:
        """Append a bot detection row."""
        row = PollBotDetectionLog(
            id=str(uuid4()),
            poll_id=entry.poll_id,
            is_bot=entry.is_bot,
            confidence_score=entry.confidence_score,
            detection_reasons=list(entry.detection_reasons),
            device_fingerprint=entry.device_fingerprint,
            user_agent=entry.user_agent,
            created_at=entry.created_at,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(row)
                await self.db.flush()
        except SQLAlchemyError as e:
            raise DatastoreError(f"bot detection insert failed: {e}") from e

        return BotDetectionLogEntry.model_validate(row)

    async def list_bots(self, poll_id: str) -> list[BotDetectionLogEntry]:
        """Get positive bot verdicts for a poll, newest first."""
        try:
            result = await self.db.execute(
                select(PollBotDetectionLog)
                .where(PollBotDetectionLog.poll_id == poll_id, PollBotDetectionLog.is_bot.is_(True))
                .order_by(PollBotDetectionLog.created_at.desc())
            )
        except SQLAlchemyError as e:
            raise DatastoreError(f"bot detection read failed: {e}") from e
        return [BotDetectionLogEntry.model_validate(row) for row in result.scalars().all()]

    async def count_bots(self, poll_id: str) -> int:
        """Count positive bot verdicts for a poll."""
        try:
            result = await self.db.execute(
                select(func.count(PollBotDetectionLog.id)).where(
                    PollBotDetectionLog.poll_id == poll_id,
                    PollBotDetectionLog.is_bot.is_(True),
                )
            )
        except SQLAlchemyError as e:
            raise DatastoreError(f"bot detection count failed: {e}") from e
        return result.scalar() or 0
