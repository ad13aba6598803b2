"""
Poll security dashboard service.

Summarizes a poll's vote log, fraud alerts and bot detections for poll
administrators and lets them acknowledge alerts.
"""

from collections.abc import Callable
from datetime import datetime, timezone

import structlog

from pollguard.repositories.provider import FraudRepositories
from pollguard.schemas.fraud import PollSecurityStats, SecurityFeedItem, Severity

logger = structlog.get_logger(__name__)

ALERT_INTEGRITY_PENALTY = 20
BOT_INTEGRITY_PENALTY = 10
HIGH_CONFIDENCE_BOT = 80


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PollSecurityService:
    """Read side of the fraud-protection tables."""

    def __init__(self, repositories: FraudRepositories, clock: Callable[[], datetime] = _utc_now):
        self.repositories = repositories
        self.clock = clock

    async def get_poll_stats(self, poll_id: str) -> PollSecurityStats:
        """Vote, voter, alert and bot counts with an integrity score."""
        votes = await self.repositories.vote_log.find(poll_id)
        open_alerts = await self.repositories.fraud_alerts.count_open(poll_id)
        bots = await self.repositories.bot_detection.count_bots(poll_id)

        unique_voters = {v.user_id or v.session_id for v in votes}
        integrity = max(0, 100 - open_alerts * ALERT_INTEGRITY_PENALTY - bots * BOT_INTEGRITY_PENALTY)

        return PollSecurityStats(
            poll_id=poll_id,
            total_votes=len(votes),
            unique_voters=len(unique_voters),
            fraud_alerts=open_alerts,
            bot_detections=bots,
            integrity_score=integrity,
        )

    async def get_security_events(self, poll_id: str) -> list[SecurityFeedItem]:
        """Fraud alerts and positive bot detections, newest first."""
        alerts = await self.repositories.fraud_alerts.list_by_poll(poll_id)
        bots = await self.repositories.bot_detection.list_bots(poll_id)

        items = [
            SecurityFeedItem(
                id=alert.id,
                type="fraud_alert",
                severity=alert.alert_severity,
                description=alert.alert_message,
                timestamp=alert.detected_at,
                resolved=alert.acknowledged,
            )
            for alert in alerts
        ]
        items.extend(
            SecurityFeedItem(
                id=detection.id,
                type="bot_detection",
                severity=Severity.HIGH if detection.confidence_score > HIGH_CONFIDENCE_BOT else Severity.MEDIUM,
                description=f"Bot detected with {detection.confidence_score}% confidence",
                timestamp=detection.created_at,
                resolved=False,
            )
            for detection in bots
        )

        return sorted(items, key=lambda item: item.timestamp, reverse=True)

    async def acknowledge_alert(self, alert_id: str) -> bool:
        """Mark an alert resolved. False when it does not exist or is already resolved."""
        acknowledged = await self.repositories.fraud_alerts.acknowledge(alert_id, self.clock())
        if acknowledged:
            logger.info("fraud_alert_acknowledged", alert_id=alert_id)
        return acknowledged
