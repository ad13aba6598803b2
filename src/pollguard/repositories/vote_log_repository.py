"""
Vote log repository for database operations.

The vote log is append-only: there are no update or delete operations.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pollguard.core.exceptions import DatastoreError
from pollguard.models.vote_log import PollVoteLog
from pollguard.repositories.provider import find_limit_violation
from pollguard.schemas.vote_log import LimitViolation, VoteLimits, VoteLogEntry

logger = structlog.get_logger(__name__)


class VoteLogRepository:
    """Repository for vote log database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _filters(
        poll_id: str,
        hashed_identity: Optional[str],
        session_id: Optional[str],
        user_id: Optional[str],
        since: Optional[datetime],
    ) -> list:
        conditions = [PollVoteLog.poll_id == poll_id]
        if hashed_identity is not None:
            conditions.append(PollVoteLog.hashed_identity == hashed_identity)
        if session_id is not None:
            conditions.append(PollVoteLog.session_id == session_id)
        if user_id is not None:
            conditions.append(PollVoteLog.user_id == user_id)
        if since is not None:
            conditions.append(PollVoteLog.created_at >= since)
        return conditions

    async def find(
        self,
        poll_id: str,
        hashed_identity: Optional[str] = None,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> list[VoteLogEntry]:
        """Get vote log rows for a poll, oldest first."""
        conditions = self._filters(poll_id, hashed_identity, session_id, user_id, since)
        try:
            result = await self.db.execute(
                select(PollVoteLog).where(*conditions).order_by(PollVoteLog.created_at)
            )
        except SQLAlchemyError as e:
            raise DatastoreError(f"vote log read failed: {e}") from e
        return [VoteLogEntry.model_validate(row) for row in result.scalars().all()]

    async def count(
        self,
        poll_id: str,
        hashed_identity: Optional[str] = None,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> int:
        """Count vote log rows matching the filters."""
        conditions = self._filters(poll_id, hashed_identity, session_id, user_id, since)
        try:
            result = await self.db.execute(select(func.count(PollVoteLog.id)).where(*conditions))
        except SQLAlchemyError as e:
            raise DatastoreError(f"vote log count failed: {e}") from e
        return result.scalar() or 0

    async def create(self, entry: VoteLogEntry) -> VoteLogEntry:
        """
        Append a vote log row.

        The insert runs in a savepoint: a failure rolls back only this row and
        leaves the surrounding transaction usable.
        """
        row = PollVoteLog(
            id=str(uuid4()),
            poll_id=entry.poll_id,
            user_id=entry.user_id,
            hashed_identity=entry.hashed_identity,
            device_fingerprint=entry.device_fingerprint,
            user_agent=entry.user_agent,
            vote_option=entry.vote_option,
            region=entry.region,
            session_id=entry.session_id,
            created_at=entry.created_at,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(row)
                await self.db.flush()
        except SQLAlchemyError as e:
            raise DatastoreError(f"vote log insert failed: {e}") from e

        return VoteLogEntry.model_validate(row)

    async def insert_if_under_limits(
        self, entry: VoteLogEntry, limits: VoteLimits
    ) -> Optional[LimitViolation]:
        """
        Insert the row only if no vote ceiling would be exceeded.

        A transaction-scoped advisory lock keyed on the poll serializes
        concurrent writers until the surrounding transaction ends, closing
        the window between the limit check and the insert.
        """
        try:
            await self.db.execute(
                select(func.pg_advisory_xact_lock(func.hashtext(f"poll_vote_log:{entry.poll_id}")))
            )
        except SQLAlchemyError as e:
            raise DatastoreError(f"vote log lock failed: {e}") from e

        violation = await find_limit_violation(self, entry, limits)
        if violation is not None:
            logger.info("vote_log_insert_rejected", poll_id=entry.poll_id, limit=violation.value)
            return violation

        await self.create(entry)
        return None
