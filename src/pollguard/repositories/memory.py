"""
In-memory repositories.

Process-local implementations of every repository protocol, used for local
development (``FRAUD_STORAGE_BACKEND=memory``) and tests. Writes to the
vote log are serialized per poll with an ``asyncio.Lock``.
"""

import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Optional
from uuid import uuid4

import structlog

from pollguard.repositories.provider import FraudRepositories, find_limit_violation
from pollguard.schemas.fraud import (
    BotDetectionLogEntry,
    FraudAlert,
    FraudSettings,
    SecurityEventRecord,
)
from pollguard.schemas.vote_log import LimitViolation, VoteLimits, VoteLogEntry

logger = structlog.get_logger(__name__)


class InMemoryVoteLogRepository:
    """Append-only vote log kept in a list."""

    def __init__(self) -> None:
        self.entries: list[VoteLogEntry] = []
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _matching(
        self,
        poll_id: str,
        hashed_identity: Optional[str],
        session_id: Optional[str],
        user_id: Optional[str],
        since: Optional[datetime],
    ) -> list[VoteLogEntry]:
        return [
            e
            for e in self.entries
            if e.poll_id == poll_id
            and (hashed_identity is None or e.hashed_identity == hashed_identity)
            and (session_id is None or e.session_id == session_id)
            and (user_id is None or e.user_id == user_id)
            and (since is None or e.created_at >= since)
        ]

    async def find(
        self,
        poll_id: str,
        hashed_identity: Optional[str] = None,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> list[VoteLogEntry]:
        rows = self._matching(poll_id, hashed_identity, session_id, user_id, since)
        return sorted(rows, key=lambda e: e.created_at)

    async def count(
        self,
        poll_id: str,
        hashed_identity: Optional[str] = None,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> int:
        return len(self._matching(poll_id, hashed_identity, session_id, user_id, since))

    async def create(self, entry: VoteLogEntry) -> VoteLogEntry:
        stored = entry.model_copy(update={"id": str(uuid4())})
        self.entries.append(stored)
        return stored

    async def insert_if_under_limits(
        self, entry: VoteLogEntry, limits: VoteLimits
    ) -> Optional[LimitViolation]:
        async with self._locks[entry.poll_id]:
            violation = await find_limit_violation(self, entry, limits)
            if violation is not None:
                logger.info("vote_log_insert_rejected", poll_id=entry.poll_id, limit=violation.value)
                return violation
            await self.create(entry)
            return None


class InMemoryFraudSettingsRepository:
    """Fraud settings keyed by poll id."""

    def __init__(self) -> None:
        self.settings: dict[str, FraudSettings] = {}

    def put(self, fraud_settings: FraudSettings) -> None:
        """Store settings for a poll (administrator action)."""
        self.settings[fraud_settings.poll_id] = fraud_settings

    async def get_by_poll(self, poll_id: str) -> Optional[FraudSettings]:
        return self.settings.get(poll_id)


class InMemoryBotDetectionLogRepository:
    """Bot detection rows kept in a list."""

    def __init__(self) -> None:
        self.entries: list[BotDetectionLogEntry] = []

    async def create(self, entry: BotDetectionLogEntry) -> BotDetectionLogEntry:
        stored = entry.model_copy(update={"id": str(uuid4())})
        self.entries.append(stored)
        return stored

    async def list_bots(self, poll_id: str) -> list[BotDetectionLogEntry]:
        rows = [e for e in self.entries if e.poll_id == poll_id and e.is_bot]
        return sorted(rows, key=lambda e: e.created_at, reverse=True)

    async def count_bots(self, poll_id: str) -> int:
        return sum(1 for e in self.entries if e.poll_id == poll_id and e.is_bot)


class InMemoryFraudAlertRepository:
    """Fraud alerts keyed by id."""

    def __init__(self) -> None:
        self.alerts: dict[str, FraudAlert] = {}

    async def create(self, alert: FraudAlert) -> FraudAlert:
        stored = alert.model_copy(update={"id": str(uuid4())})
        self.alerts[stored.id] = stored
        return stored

    async def list_by_poll(self, poll_id: str) -> list[FraudAlert]:
        rows = [a for a in self.alerts.values() if a.poll_id == poll_id]
        return sorted(rows, key=lambda a: a.detected_at, reverse=True)

    async def count_open(self, poll_id: str) -> int:
        return sum(1 for a in self.alerts.values() if a.poll_id == poll_id and not a.acknowledged)

    async def has_open_alert(self, poll_id: str, alert_type: str) -> bool:
        return any(
            a.poll_id == poll_id and a.alert_type == alert_type and not a.acknowledged
            for a in self.alerts.values()
        )

    async def acknowledge(self, alert_id: str, acknowledged_at: datetime) -> bool:
        alert = self.alerts.get(alert_id)
        if alert is None or alert.acknowledged:
            return False
        self.alerts[alert_id] = alert.model_copy(
            update={"acknowledged": True, "acknowledged_at": acknowledged_at}
        )
        return True


class InMemorySecurityEventRepository:
    """Security events kept in a list."""

    def __init__(self) -> None:
        self.events: list[SecurityEventRecord] = []

    async def create(self, event: SecurityEventRecord) -> SecurityEventRecord:
        stored = event.model_copy(update={"id": str(uuid4())})
        self.events.append(stored)
        return stored


def memory_repositories() -> FraudRepositories:
    """Build a fresh, empty set of in-memory repositories."""
    return FraudRepositories(
        vote_log=InMemoryVoteLogRepository(),
        fraud_settings=InMemoryFraudSettingsRepository(),
        bot_detection=InMemoryBotDetectionLogRepository(),
        fraud_alerts=InMemoryFraudAlertRepository(),
        security_events=InMemorySecurityEventRepository(),
    )
