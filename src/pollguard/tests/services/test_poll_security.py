"""
Tests for the poll security dashboard service.
"""

from datetime import timedelta

import pytest

from pollguard.schemas.fraud import BotDetectionLogEntry, FraudAlert, Severity
from pollguard.schemas.vote_log import VoteLogEntry
from pollguard.services.poll_security import PollSecurityService


@pytest.fixture
def security(repos, clock) -> PollSecurityService:
    return PollSecurityService(repos, clock=clock)


async def add_vote(repos, clock, session_id: str, user_id: str | None = None) -> None:
    await repos.vote_log.create(
        VoteLogEntry(
            poll_id="poll-1",
            user_id=user_id,
            hashed_identity="0011223344556677",
            device_fingerprint="abc123",
            vote_option=0,
            session_id=session_id,
            created_at=clock(),
        )
    )


async def add_bot(repos, clock, confidence: int, is_bot: bool = True, minutes_ago: int = 0) -> None:
    await repos.bot_detection.create(
        BotDetectionLogEntry(
            poll_id="poll-1",
            is_bot=is_bot,
            confidence_score=confidence,
            detection_reasons=["Automation markers detected"],
            device_fingerprint="abc123",
            created_at=clock() - timedelta(minutes=minutes_ago),
        )
    )


async def add_alert(repos, clock, minutes_ago: int = 0) -> FraudAlert:
    return await repos.fraud_alerts.create(
        FraudAlert(
            poll_id="poll-1",
            alert_type="vote_burst",
            alert_severity=Severity.MEDIUM,
            alert_message="12 votes arrived within 60 seconds",
            detected_at=clock() - timedelta(minutes=minutes_ago),
        )
    )


@pytest.mark.unit
class TestPollStats:
    async def test_empty_poll(self, security) -> None:
        stats = await security.get_poll_stats("poll-1")

        assert stats.total_votes == 0
        assert stats.unique_voters == 0
        assert stats.integrity_score == 100

    async def test_counts_and_integrity(self, security, repos, clock) -> None:
        await add_vote(repos, clock, "session_1_a", user_id="user-1")
        await add_vote(repos, clock, "session_2_b", user_id="user-1")
        await add_vote(repos, clock, "session_3_c")
        await add_vote(repos, clock, "session_3_c")
        await add_bot(repos, clock, 60)
        await add_bot(repos, clock, 20, is_bot=False)
        await add_alert(repos, clock)

        stats = await security.get_poll_stats("poll-1")

        assert stats.total_votes == 4
        assert stats.unique_voters == 2
        assert stats.bot_detections == 1
        assert stats.fraud_alerts == 1
        assert stats.integrity_score == 70

    async def test_integrity_score_floors_at_zero(self, security, repos, clock) -> None:
        for _ in range(6):
            await add_alert(repos, clock)

        assert (await security.get_poll_stats("poll-1")).integrity_score == 0

    async def test_acknowledged_alerts_do_not_count(self, security, repos, clock) -> None:
        alert = await add_alert(repos, clock)
        await security.acknowledge_alert(alert.id)

        stats = await security.get_poll_stats("poll-1")

        assert stats.fraud_alerts == 0
        assert stats.integrity_score == 100


@pytest.mark.unit
class TestSecurityFeed:
    async def test_merges_alerts_and_bots_newest_first(self, security, repos, clock) -> None:
        await add_alert(repos, clock, minutes_ago=30)
        await add_bot(repos, clock, 100, minutes_ago=10)
        await add_bot(repos, clock, 60, minutes_ago=50)
        await add_bot(repos, clock, 20, is_bot=False)

        feed = await security.get_security_events("poll-1")

        assert [item.type for item in feed] == ["bot_detection", "fraud_alert", "bot_detection"]
        assert feed[0].severity == Severity.HIGH
        assert feed[0].description == "Bot detected with 100% confidence"
        assert feed[2].severity == Severity.MEDIUM

    async def test_acknowledged_alert_is_resolved(self, security, repos, clock) -> None:
        alert = await add_alert(repos, clock)

        assert await security.acknowledge_alert(alert.id) is True
        [item] = await security.get_security_events("poll-1")
        assert item.resolved is True

    async def test_acknowledge_twice_or_unknown(self, security, repos, clock) -> None:
        alert = await add_alert(repos, clock)
        await security.acknowledge_alert(alert.id)

        assert await security.acknowledge_alert(alert.id) is False
        assert await security.acknowledge_alert("missing") is False
