"""
Repository provider for dependency injection.

The vote gate depends only on the protocols below, so the datastore can be
PostgreSQL (one repository class per table) or the in-memory store used for
local development and tests.

Usage:
    repos = sql_repositories(db)
    service = FraudProtectionService(repos)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Protocol, runtime_checkable

from sqlalchemy.ext.asyncio import AsyncSession

from pollguard.core.config import StorageBackend, settings
from pollguard.schemas.fraud import (
    BotDetectionLogEntry,
    FraudAlert,
    FraudSettings,
    SecurityEventRecord,
)
from pollguard.schemas.vote_log import LimitViolation, VoteLimits, VoteLogEntry


def is_memory_backend() -> bool:
    """Check if the in-memory store is configured."""
    return settings.FRAUD_STORAGE_BACKEND == StorageBackend.MEMORY


# =============================================================================
# Repository Protocols (Interfaces)
# =============================================================================


@runtime_checkable
class VoteLogRepositoryProtocol(Protocol):
    """Read and append operations on the vote log."""

    async def find(
        self,
        poll_id: str,
        hashed_identity: Optional[str] = None,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> list[VoteLogEntry]: ...

    async def count(
        self,
        poll_id: str,
        hashed_identity: Optional[str] = None,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> int: ...

    async def create(self, entry: VoteLogEntry) -> VoteLogEntry: ...

    async def insert_if_under_limits(
        self, entry: VoteLogEntry, limits: VoteLimits
    ) -> Optional[LimitViolation]: ...


@runtime_checkable
class FraudSettingsRepositoryProtocol(Protocol):
    """Read-only access to per-poll enforcement settings."""

    async def get_by_poll(self, poll_id: str) -> Optional[FraudSettings]: ...


@runtime_checkable
class BotDetectionLogRepositoryProtocol(Protocol):
    """Append and query bot detection runs."""

    async def create(self, entry: BotDetectionLogEntry) -> BotDetectionLogEntry: ...
    async def list_bots(self, poll_id: str) -> list[BotDetectionLogEntry]: ...
    async def count_bots(self, poll_id: str) -> int: ...


@runtime_checkable
class FraudAlertRepositoryProtocol(Protocol):
    """Fraud alerts raised by pattern detection."""

    async def create(self, alert: FraudAlert) -> FraudAlert: ...
    async def list_by_poll(self, poll_id: str) -> list[FraudAlert]: ...
    async def count_open(self, poll_id: str) -> int: ...
    async def has_open_alert(self, poll_id: str, alert_type: str) -> bool: ...
    async def acknowledge(self, alert_id: str, acknowledged_at: datetime) -> bool: ...


@runtime_checkable
class SecurityEventRepositoryProtocol(Protocol):
    """Write-only security event audit log."""

    async def create(self, event: SecurityEventRecord) -> SecurityEventRecord: ...


@dataclass
class FraudRepositories:
    """Every repository the fraud-protection services need."""

    vote_log: VoteLogRepositoryProtocol
    fraud_settings: FraudSettingsRepositoryProtocol
    bot_detection: BotDetectionLogRepositoryProtocol
    fraud_alerts: FraudAlertRepositoryProtocol
    security_events: SecurityEventRepositoryProtocol


# =============================================================================
# Shared rules
# =============================================================================


async def find_limit_violation(
    repo: VoteLogRepositoryProtocol,
    entry: VoteLogEntry,
    limits: VoteLimits,
) -> Optional[LimitViolation]:
    """
    Return the first ceiling the entry would exceed, or None.

    Callers must hold the poll's write serialization while this runs and
    until the entry is inserted.
    """
    if limits.max_votes_per_identity is not None:
        since = entry.created_at - timedelta(seconds=limits.identity_window_seconds)
        identity_votes = await repo.count(
            entry.poll_id, hashed_identity=entry.hashed_identity, since=since
        )
        if identity_votes >= limits.max_votes_per_identity:
            return LimitViolation.IDENTITY

    if limits.max_votes_per_session is not None:
        session_votes = await repo.count(entry.poll_id, session_id=entry.session_id)
        if session_votes >= limits.max_votes_per_session:
            return LimitViolation.SESSION

    if limits.one_vote_per_user and entry.user_id:
        if await repo.count(entry.poll_id, user_id=entry.user_id) > 0:
            return LimitViolation.USER

    return None


# =============================================================================
# Factories
# =============================================================================


def sql_repositories(db: AsyncSession) -> FraudRepositories:
    """Build PostgreSQL-backed repositories sharing one session."""
    from pollguard.repositories.bot_detection_repository import BotDetectionLogRepository
    from pollguard.repositories.fraud_alert_repository import FraudAlertRepository
    from pollguard.repositories.fraud_settings_repository import FraudSettingsRepository
    from pollguard.repositories.security_event_repository import SecurityEventRepository
    from pollguard.repositories.vote_log_repository import VoteLogRepository

    return FraudRepositories(
        vote_log=VoteLogRepository(db),
        fraud_settings=FraudSettingsRepository(db),
        bot_detection=BotDetectionLogRepository(db),
        fraud_alerts=FraudAlertRepository(db),
        security_events=SecurityEventRepository(db),
    )
