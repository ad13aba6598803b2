"""Fraud alert repository."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pollguard.core.exceptions import DatastoreError
from pollguard.models.fraud_alert import PollFraudAlert
from pollguard.schemas.fraud import FraudAlert


class FraudAlertRepository:
    """Repository for fraud alerts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, alert: FraudAlert) -> FraudAlert:
        """Raise a new alert (in a savepoint)."""
        row = PollFraudAlert(
            id=str(uuid4()),
            poll_id=alert.poll_id,
            alert_type=alert.alert_type,
            alert_severity=alert.alert_severity.value,
            alert_message=alert.alert_message,
            detected_at=alert.detected_at,
            acknowledged=False,
            acknowledged_at=None,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(row)
                await self.db.flush()
        except SQLAlchemyError as e:
            raise DatastoreError(f"fraud alert insert failed: {e}") from e

        return FraudAlert.model_validate(row)

    async def list_by_poll(self, poll_id: str) -> list[FraudAlert]:
        """Get all alerts for a poll, newest first."""
        try:
            result = await self.db.execute(
                select(PollFraudAlert)
                .where(PollFraudAlert.poll_id == poll_id)
                .order_by(PollFraudAlert.detected_at.desc())
            )
        except SQLAlchemyError as e:
            raise DatastoreError(f"fraud alert read failed: {e}") from e
        return [FraudAlert.model_validate(row) for row in result.scalars().all()]

    async def count_open(self, poll_id: str) -> int:
        """Count unacknowledged alerts for a poll."""
        try:
            result = await self.db.execute(
                select(func.count(PollFraudAlert.id)).where(
                    PollFraudAlert.poll_id == poll_id,
                    PollFraudAlert.acknowledged.is_(False),
                )
            )
        except SQLAlchemyError as e:
            raise DatastoreError(f"fraud alert count failed: {e}") from e
        return result.scalar() or 0

    async def has_open_alert(self, poll_id: str, alert_type: str) -> bool:
        """Check for an unacknowledged alert of the given type."""
        try:
            result = await self.db.execute(
                select(func.count(PollFraudAlert.id)).where(
                    PollFraudAlert.poll_id == poll_id,
                    PollFraudAlert.alert_type == alert_type,
                    PollFraudAlert.acknowledged.is_(False),
                )
            )
        except SQLAlchemyError as e:
            raise DatastoreError(f"fraud alert lookup failed: {e}") from e
        return (result.scalar() or 0) > 0

    async def acknowledge(self, alert_id: str, acknowledged_at: datetime) -> bool:
        """Mark an alert resolved. Returns False when no open alert matched."""
        try:
            result = await self.db.execute(
                update(PollFraudAlert)
                .where(PollFraudAlert.id == alert_id, PollFraudAlert.acknowledged.is_(False))
                .values(acknowledged=True, acknowledged_at=acknowledged_at)
            )
        except SQLAlchemyError as e:
            raise DatastoreError(f"fraud alert acknowledge failed: {e}") from e
        return result.rowcount == 1
