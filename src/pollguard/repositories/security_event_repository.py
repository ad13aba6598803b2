"""Security event repository (write-only)."""

from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pollguard.core.exceptions import DatastoreError
from pollguard.models.security_event import SecurityEvent
from pollguard.schemas.fraud import SecurityEventRecord


class SecurityEventRepository:
    """Repository for security event audit rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, event: SecurityEventRecord) -> SecurityEventRecord:
        """Append a security event."""
        row = SecurityEvent(
            id=str(uuid4()),
            event_type=event.event_type,
            resource_type=event.resource_type,
            resource_id=event.resource_id,
            details=dict(event.details),
            severity=event.severity.value,
            created_at=event.created_at,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(row)
                await self.db.flush()
        except SQLAlchemyError as e:
            raise DatastoreError(f"security event insert failed: {e}") from e

        return SecurityEventRecord.model_validate(row)
