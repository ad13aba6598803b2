"""
Vote-log fraud pattern detection.

Runs after every logged vote and raises alerts for patterns no single
vote-gate decision can see:
- device_flood: one fingerprint casting many votes
- identity_flood: one client identity casting many votes
- vote_burst: many votes on the poll inside a short span
- option_skew: almost every recent vote going to one option

An alert type is raised at most once per poll until it is acknowledged.
"""

from collections import Counter
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import structlog

from pollguard.repositories.provider import FraudAlertRepositoryProtocol, VoteLogRepositoryProtocol
from pollguard.schemas.fraud import FraudAlert, Severity
from pollguard.schemas.vote_log import VoteLogEntry
from pollguard.services.fingerprint import is_missing_signal

logger = structlog.get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FraudPatternDetector:
    """Scans a poll's recent vote log and raises fraud alerts."""

    DEVICE_FLOOD_THRESHOLD = 5
    IDENTITY_FLOOD_THRESHOLD = 5
    BURST_COUNT = 10
    BURST_SPAN = timedelta(seconds=60)
    SKEW_MIN_VOTES = 20
    SKEW_RATIO = 0.9

    def __init__(
        self,
        vote_log: VoteLogRepositoryProtocol,
        fraud_alerts: FraudAlertRepositoryProtocol,
        window: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.vote_log = vote_log
        self.fraud_alerts = fraud_alerts
        self.window = window
        self.clock = clock

    async def detect(self, poll_id: str) -> list[FraudAlert]:
        """Raise alerts for the poll and return the newly created ones."""
        now = self.clock()
        recent = await self.vote_log.find(poll_id, since=now - self.window)

        raised = []
        for alert in self.find_patterns(poll_id, recent, now):
            if await self.fraud_alerts.has_open_alert(poll_id, alert.alert_type):
                continue
            created = await self.fraud_alerts.create(alert)
            raised.append(created)
            logger.warning(
                "fraud_alert_raised",
                poll_id=poll_id,
                alert_type=alert.alert_type,
                severity=alert.alert_severity.value,
            )
        return raised

    def find_patterns(self, poll_id: str, votes: list[VoteLogEntry], now: datetime) -> list[FraudAlert]:
        """Candidate alerts for a set of votes (no deduplication)."""
        alerts = []

        devices = Counter(v.device_fingerprint for v in votes if not is_missing_signal(v.device_fingerprint))
        if devices:
            fingerprint, count = devices.most_common(1)[0]
            if count >= self.DEVICE_FLOOD_THRESHOLD:
                alerts.append(
                    FraudAlert(
                        poll_id=poll_id,
                        alert_type="device_flood",
                        alert_severity=Severity.HIGH,
                        alert_message=f"Device {fingerprint[:8]} cast {count} votes in the last hour",
                        detected_at=now,
                    )
                )

        identities = Counter(v.hashed_identity for v in votes if not is_missing_signal(v.hashed_identity))
        if identities:
            identity, count = identities.most_common(1)[0]
            if count >= self.IDENTITY_FLOOD_THRESHOLD:
                alerts.append(
                    FraudAlert(
                        poll_id=poll_id,
                        alert_type="identity_flood",
                        alert_severity=Severity.HIGH,
                        alert_message=f"Client identity {identity[:8]} cast {count} votes in the last hour",
                        detected_at=now,
                    )
                )

        burst = self._largest_burst(votes)
        if burst >= self.BURST_COUNT:
            alerts.append(
                FraudAlert(
                    poll_id=poll_id,
                    alert_type="vote_burst",
                    alert_severity=Severity.MEDIUM,
                    alert_message=(
                        f"{burst} votes arrived within {self.BURST_SPAN.total_seconds():.0f} seconds"
                    ),
                    detected_at=now,
                )
            )

        if len(votes) >= self.SKEW_MIN_VOTES:
            option, count = Counter(v.vote_option for v in votes).most_common(1)[0]
            share = count / len(votes)
            if share > self.SKEW_RATIO:
                alerts.append(
                    FraudAlert(
                        poll_id=poll_id,
                        alert_type="option_skew",
                        alert_severity=Severity.MEDIUM,
                        alert_message=f"Option {option} received {share:.0%} of {len(votes)} recent votes",
                        detected_at=now,
                    )
                )

        return alerts

    def _largest_burst(self, votes: list[VoteLogEntry]) -> int:
        """Most votes inside any span of BURST_SPAN (two-pointer sweep)."""
        timestamps = sorted(v.created_at for v in votes)
        largest = 0
        start = 0
        for end, current in enumerate(timestamps):
            while current - timestamps[start] > self.BURST_SPAN:
                start += 1
            largest = max(largest, end - start + 1)
        return largest
