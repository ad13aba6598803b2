"""
Tests for the vote gate.

Covers the validation decision order, vote logging, bot detection runs and
the failure policy.
"""

import asyncio
import base64
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from pollguard.core.config import FailurePolicy, IdentityWindow
from pollguard.schemas.client import InteractionSignals
from pollguard.schemas.fraud import FraudSettings, Severity
from pollguard.schemas.vote_log import VoteLogEntry
from pollguard.services.captcha import CaptchaVerifier
from pollguard.services.fingerprint import generate_device_fingerprint
from pollguard.services.fraud_protection import (
    REASON_ALREADY_VOTED,
    REASON_CAPTCHA_EXPIRED,
    REASON_CAPTCHA_FAILED,
    REASON_CAPTCHA_MISSING,
    REASON_HIGH_RISK,
    REASON_INVALID_POLL,
    REASON_UNAVAILABLE,
    FraudProtectionService,
)
from pollguard.services.risk_scoring import RiskContext, RiskDelta, RiskScorer
from pollguard.services.security_events import SecurityEventType
from pollguard.services.session_store import InMemorySessionIdStore

POLL_ID = "3f2b6c1e-8d4a-4f6b-9c1d-2e7a5b9c0d11"


class FixedRule:
    name = "fixed"

    def __init__(self, points: int):
        self.points = points

    def evaluate(self, context: RiskContext) -> RiskDelta:
        return RiskDelta(self.points, ["fixed"])


def token(verified: bool, timestamp: datetime) -> str:
    payload = {"verified": verified, "timestamp": int(timestamp.timestamp() * 1000)}
    return base64.b64encode(json.dumps(payload).encode()).decode()


def rate_limited(**overrides) -> FraudSettings:
    values = {
        "poll_id": POLL_ID,
        "enable_captcha": False,
        "enable_rate_limiting": True,
        "max_votes_per_ip": 1,
        "max_votes_per_session": 1,
    }
    values.update(overrides)
    return FraudSettings(**values)


@pytest.fixture
def make_service(repos, clock):
    def factory(**kwargs) -> FraudProtectionService:
        kwargs.setdefault("captcha_verifier", CaptchaVerifier(signing_key="", max_age_seconds=300, clock=clock))
        kwargs.setdefault("failure_policy", FailurePolicy.OPEN)
        kwargs.setdefault("identity_window", IdentityWindow.DAY)
        kwargs.setdefault("captcha_threshold", 50)
        kwargs.setdefault("block_threshold", 80)
        return FraudProtectionService(repos, clock=clock, **kwargs)

    return factory


@pytest.fixture
def service(make_service) -> FraudProtectionService:
    return make_service()


def fixed_scorer(repos, clock, points: int) -> RiskScorer:
    return RiskScorer(repos.vote_log, rules=[FixedRule(points)], clock=clock)


def event_types(repos) -> list[str]:
    return [e.event_type for e in repos.security_events.events]


# =============================================================================
# Threat scanning
# =============================================================================


@pytest.mark.unit
class TestThreatScreening:
    @pytest.mark.parametrize(
        "poll_id",
        ["1' OR '1'='1", "<script>alert(1)</script>", "../../etc/passwd", ""],
    )
    async def test_malicious_poll_id_is_denied(self, service, repos, environment, poll_id: str) -> None:
        """Test threats are denied before any datastore access."""
        repos.fraud_settings.get_by_poll = AsyncMock()

        result = await service.validate_vote(poll_id, environment, InMemorySessionIdStore())

        assert result.can_vote is False
        assert result.risk_score == 100
        assert result.reason == REASON_INVALID_POLL
        repos.fraud_settings.get_by_poll.assert_not_awaited()

    async def test_only_security_event_is_written(self, service, repos, environment) -> None:
        await service.validate_vote("1; DROP TABLE poll_vote_log", environment, InMemorySessionIdStore())

        assert repos.vote_log.entries == []
        assert repos.bot_detection.entries == []
        assert len(repos.security_events.events) == 1
        event = repos.security_events.events[0]
        assert event.event_type == SecurityEventType.THREAT_DETECTED
        assert event.severity == Severity.HIGH
        assert "sql_injection" in event.details["threats"]

    async def test_log_vote_rejects_malicious_poll_id(self, service, repos, environment) -> None:
        logged = await service.log_vote("<script>", 0, environment, InMemorySessionIdStore())

        assert logged is False
        assert repos.vote_log.entries == []


# =============================================================================
# End-to-end scenarios
# =============================================================================


@pytest.mark.integration
class TestScenarios:
    async def test_scenario_a_clean_poll_allows_vote(self, service, repos, environment) -> None:
        """Captcha disabled, no prior votes, ordinary browser."""
        repos.fraud_settings.put(rate_limited())

        result = await service.validate_vote(POLL_ID, environment, InMemorySessionIdStore())

        assert result.can_vote is True
        assert result.risk_score < 50
        assert result.requires_captcha is False
        assert event_types(repos) == [SecurityEventType.VOTE_VALIDATED]
        assert repos.security_events.events[0].severity == Severity.LOW

    async def test_scenario_b_busy_device_needs_captcha(self, service, repos, environment, clock) -> None:
        """25 votes from the same device this hour push the score into the CAPTCHA band."""
        repos.fraud_settings.put(rate_limited())
        fingerprint = generate_device_fingerprint(environment)
        for i in range(1, 26):
            await repos.vote_log.create(
                VoteLogEntry(
                    poll_id=POLL_ID,
                    hashed_identity="someone-else",
                    device_fingerprint=fingerprint,
                    vote_option=0,
                    session_id=f"session_{i}_old",
                    created_at=clock() - timedelta(minutes=2 * i),
                )
            )

        without_token = await service.validate_vote(POLL_ID, environment, InMemorySessionIdStore())

        assert without_token.can_vote is False
        assert without_token.requires_captcha is True
        assert without_token.risk_score == 65
        assert without_token.reason == REASON_CAPTCHA_MISSING
        assert repos.security_events.events[-1].severity == Severity.MEDIUM

        with_token = await service.validate_vote(
            POLL_ID,
            environment,
            InMemorySessionIdStore(),
            captcha_token=token(True, clock() - timedelta(seconds=30)),
        )

        assert with_token.can_vote is True
        assert with_token.risk_score == 65

    async def test_scenario_c_daily_identity_rotation(self, service, repos, environment, clock) -> None:
        """The per-device limit resets when the identity hash rotates at midnight."""
        repos.fraud_settings.put(rate_limited(max_votes_per_session=10))
        clock.now = datetime(2026, 10, 17, 23, 50, tzinfo=timezone.utc)

        assert await service.log_vote(POLL_ID, 1, environment, InMemorySessionIdStore()) is True

        clock.advance(minutes=5)
        same_day = await service.validate_vote(POLL_ID, environment, InMemorySessionIdStore())
        assert same_day.can_vote is False
        assert same_day.reason == "Vote limit reached: maximum 1 vote(s) per device per hour"

        clock.advance(minutes=10)
        next_day = await service.validate_vote(POLL_ID, environment, InMemorySessionIdStore())
        assert next_day.can_vote is True


# =============================================================================
# Decision order
# =============================================================================


@pytest.mark.unit
class TestCaptchaGate:
    async def test_poll_setting_requires_captcha_at_low_risk(self, service, repos, environment) -> None:
        repos.fraud_settings.put(rate_limited(enable_captcha=True))

        result = await service.validate_vote(POLL_ID, environment, InMemorySessionIdStore())

        assert result.can_vote is False
        assert result.requires_captcha is True
        assert result.risk_score == 0
        assert event_types(repos) == [SecurityEventType.CAPTCHA_REQUIRED]

    async def test_valid_token_passes_gate(self, service, repos, environment, clock) -> None:
        repos.fraud_settings.put(rate_limited(enable_captcha=True))

        result = await service.validate_vote(
            POLL_ID, environment, InMemorySessionIdStore(), captcha_token=token(True, clock())
        )

        assert result.can_vote is True

    async def test_expired_token_is_rejected(self, service, repos, environment, clock) -> None:
        repos.fraud_settings.put(rate_limited(enable_captcha=True))

        result = await service.validate_vote(
            POLL_ID,
            environment,
            InMemorySessionIdStore(),
            captcha_token=token(True, clock() - timedelta(minutes=5, seconds=1)),
        )

        assert result.can_vote is False
        assert result.requires_captcha is True
        assert result.reason == REASON_CAPTCHA_EXPIRED

    async def test_unverified_token_is_rejected(self, service, repos, environment, clock) -> None:
        repos.fraud_settings.put(rate_limited(enable_captcha=True))

        result = await service.validate_vote(
            POLL_ID, environment, InMemorySessionIdStore(), captcha_token=token(False, clock())
        )

        assert result.reason == REASON_CAPTCHA_FAILED
        assert event_types(repos) == [SecurityEventType.CAPTCHA_FAILED]

    async def test_risk_score_at_threshold_requires_captcha(self, make_service, repos, clock, environment) -> None:
        service = make_service(risk_scorer=fixed_scorer(repos, clock, 50))

        result = await service.validate_vote(POLL_ID, environment, InMemorySessionIdStore())

        assert result.requires_captcha is True
        assert result.can_vote is False


@pytest.mark.unit
class TestHardBlock:
    @pytest.mark.parametrize("points", [80, 95, 100])
    async def test_high_risk_blocked_even_with_valid_token(
        self, make_service, repos, clock, environment, points: int
    ) -> None:
        service = make_service(risk_scorer=fixed_scorer(repos, clock, points))

        result = await service.validate_vote(
            POLL_ID, environment, InMemorySessionIdStore(), captcha_token=token(True, clock())
        )

        assert result.can_vote is False
        assert result.reason == REASON_HIGH_RISK
        assert repos.security_events.events[-1].event_type == SecurityEventType.HIGH_RISK_BLOCKED
        assert repos.security_events.events[-1].severity == Severity.CRITICAL

    async def test_high_risk_without_token_logs_high_severity(self, make_service, repos, clock, environment) -> None:
        service = make_service(risk_scorer=fixed_scorer(repos, clock, 85))

        result = await service.validate_vote(POLL_ID, environment, InMemorySessionIdStore())

        assert result.can_vote is False
        assert result.requires_captcha is True
        assert repos.security_events.events[-1].severity == Severity.HIGH


@pytest.mark.unit
class TestRateLimits:
    async def test_no_settings_skips_rate_limits(self, make_service, repos, clock, environment) -> None:
        service = make_service(risk_scorer=fixed_scorer(repos, clock, 0))
        store = InMemorySessionIdStore()
        for _ in range(5):
            await service.log_vote(POLL_ID, 0, environment, store, user_id="user-1")

        result = await service.validate_vote(POLL_ID, environment, store, user_id="user-1")

        assert result.can_vote is True

    async def test_disabled_rate_limiting_skips_rate_limits(self, make_service, repos, clock, environment) -> None:
        repos.fraud_settings.put(rate_limited(enable_rate_limiting=False))
        service = make_service(risk_scorer=fixed_scorer(repos, clock, 10))
        store = InMemorySessionIdStore()
        for _ in range(5):
            assert await service.log_vote(POLL_ID, 0, environment, store) is True

        result = await service.validate_vote(POLL_ID, environment, store)

        assert result.can_vote is True
        assert result.risk_score == 10

    async def test_session_limit_has_no_time_window(self, service, repos, environment, clock) -> None:
        repos.fraud_settings.put(rate_limited(max_votes_per_ip=100))
        store = InMemorySessionIdStore()
        await service.log_vote(POLL_ID, 0, environment, store)

        clock.advance(days=3)
        result = await service.validate_vote(POLL_ID, environment, store)

        assert result.can_vote is False
        assert result.reason == "Vote limit reached: maximum 1 vote(s) per session"

    async def test_user_limit_is_permanent(self, service, repos, environment, clock) -> None:
        repos.fraud_settings.put(rate_limited())
        await service.log_vote(POLL_ID, 0, environment, InMemorySessionIdStore(), user_id="user-1")

        clock.advance(days=30)
        result = await service.validate_vote(POLL_ID, environment, InMemorySessionIdStore(), user_id="user-1")

        assert result.can_vote is False
        assert result.reason == REASON_ALREADY_VOTED

    async def test_anonymous_voter_not_subject_to_user_limit(self, service, repos, environment, clock) -> None:
        repos.fraud_settings.put(rate_limited())
        await service.log_vote(POLL_ID, 0, environment, InMemorySessionIdStore(), user_id="user-1")

        clock.advance(days=30)
        result = await service.validate_vote(POLL_ID, environment, InMemorySessionIdStore())

        assert result.can_vote is True

    async def test_rate_limit_event_is_medium(self, service, repos, environment) -> None:
        repos.fraud_settings.put(rate_limited(max_votes_per_ip=0))

        await service.validate_vote(POLL_ID, environment, InMemorySessionIdStore())

        event = repos.security_events.events[-1]
        assert event.event_type == SecurityEventType.RATE_LIMIT_EXCEEDED
        assert event.severity == Severity.MEDIUM

    async def test_session_identity_window(self, make_service, repos, environment) -> None:
        """Test a new browser session gets a new identity under the session window."""
        repos.fraud_settings.put(rate_limited(max_votes_per_session=1))
        service = make_service(identity_window=IdentityWindow.SESSION)
        await service.log_vote(POLL_ID, 0, environment, InMemorySessionIdStore())

        result = await service.validate_vote(POLL_ID, environment, InMemorySessionIdStore())

        assert result.can_vote is True


# =============================================================================
# Failure policy and loading state
# =============================================================================


@pytest.mark.unit
class TestFailurePolicy:
    async def test_fail_open(self, make_service, repos, environment) -> None:
        repos.fraud_settings.get_by_poll = AsyncMock(side_effect=ConnectionError("datastore unreachable"))
        service = make_service(failure_policy=FailurePolicy.OPEN)

        result = await service.validate_vote(POLL_ID, environment, InMemorySessionIdStore())

        assert result.can_vote is True
        assert event_types(repos) == [SecurityEventType.VALIDATION_ERROR]
        assert repos.security_events.events[0].severity == Severity.MEDIUM

    async def test_fail_closed(self, make_service, repos, environment) -> None:
        repos.fraud_settings.get_by_poll = AsyncMock(side_effect=ConnectionError("datastore unreachable"))
        service = make_service(failure_policy=FailurePolicy.CLOSED)

        result = await service.validate_vote(POLL_ID, environment, InMemorySessionIdStore())

        assert result.can_vote is False
        assert result.reason == REASON_UNAVAILABLE

    async def test_risk_history_failure_uses_fallback_score(self, service, repos, environment) -> None:
        repos.vote_log.find = AsyncMock(side_effect=ConnectionError("datastore unreachable"))

        result = await service.validate_vote(POLL_ID, environment, InMemorySessionIdStore())

        assert result.can_vote is True
        assert result.risk_score == 30

    async def test_loading_while_in_flight(self, service, repos, environment) -> None:
        seen = []

        async def get_by_poll(poll_id: str):
            seen.append(service.loading)
            return None

        repos.fraud_settings.get_by_poll = get_by_poll

        assert service.loading is False
        await service.validate_vote(POLL_ID, environment, InMemorySessionIdStore())

        assert seen == [True]
        assert service.loading is False


# =============================================================================
# Vote logging
# =============================================================================


@pytest.mark.unit
class TestLogVote:
    async def test_writes_vote_metadata(self, service, repos, environment, clock) -> None:
        store = InMemorySessionIdStore("session_1760700000000_0123456789ab")

        logged = await service.log_vote(POLL_ID, 2, environment, store, user_id="user-1", region="CM-CE")

        assert logged is True
        [entry] = repos.vote_log.entries
        assert entry.poll_id == POLL_ID
        assert entry.vote_option == 2
        assert entry.user_id == "user-1"
        assert entry.region == "CM-CE"
        assert entry.session_id == "session_1760700000000_0123456789ab"
        assert entry.device_fingerprint == generate_device_fingerprint(environment)
        assert len(entry.hashed_identity) == 16
        assert entry.user_agent == environment.user_agent
        assert entry.created_at == clock()

    async def test_write_failure_is_swallowed(self, service, repos, environment) -> None:
        repos.vote_log.create = AsyncMock(side_effect=ConnectionError("datastore unreachable"))

        assert await service.log_vote(POLL_ID, 0, environment, InMemorySessionIdStore()) is False

    async def test_pattern_detection_failure_is_ignored(self, make_service, repos, environment) -> None:
        detector = MagicMock()
        detector.detect = AsyncMock(side_effect=RuntimeError("boom"))
        service = make_service(pattern_detector=detector)

        assert await service.log_vote(POLL_ID, 0, environment, InMemorySessionIdStore()) is True
        detector.detect.assert_awaited_once_with(POLL_ID)

    async def test_pattern_detection_runs_after_write(self, service, repos, environment) -> None:
        for _ in range(5):
            await service.log_vote(POLL_ID, 0, environment, InMemorySessionIdStore())

        alert_types = {a.alert_type for a in repos.fraud_alerts.alerts.values()}
        assert {"device_flood", "identity_flood"} <= alert_types

    async def test_concurrent_writes_respect_limits(self, service, repos, environment) -> None:
        """Test the limit check and insert are atomic."""
        repos.fraud_settings.put(rate_limited(max_votes_per_ip=1, max_votes_per_session=10))

        results = await asyncio.gather(
            *(service.log_vote(POLL_ID, 0, environment, InMemorySessionIdStore()) for _ in range(5))
        )

        assert sorted(results) == [False, False, False, False, True]
        assert len(repos.vote_log.entries) == 1
        assert SecurityEventType.VOTE_LOG_REJECTED in event_types(repos)

    async def test_user_vote_logged_once(self, service, repos, environment) -> None:
        repos.fraud_settings.put(rate_limited(max_votes_per_ip=10, max_votes_per_session=10))

        first = await service.log_vote(POLL_ID, 0, environment, InMemorySessionIdStore(), user_id="user-1")
        second = await service.log_vote(POLL_ID, 1, environment, InMemorySessionIdStore(), user_id="user-1")

        assert (first, second) == (True, False)


# =============================================================================
# Bot detection
# =============================================================================


@pytest.mark.unit
class TestRunBotDetection:
    async def test_bot_is_logged_and_reported(self, service, repos, environment) -> None:
        signals = InteractionSignals(webdriver=True)

        assert await service.run_bot_detection(POLL_ID, environment, signals) is True

        [entry] = repos.bot_detection.entries
        assert entry.is_bot is True
        assert entry.confidence_score == 60
        assert entry.device_fingerprint == generate_device_fingerprint(environment)
        assert event_types(repos) == [SecurityEventType.BOT_DETECTED]
        assert repos.security_events.events[0].severity == Severity.HIGH

    async def test_human_is_logged_without_event(self, service, repos, environment) -> None:
        signals = InteractionSignals(mouse_move_count=25, key_press_count=8, time_to_interaction_ms=1800)

        assert await service.run_bot_detection(POLL_ID, environment, signals) is False

        assert len(repos.bot_detection.entries) == 1
        assert repos.bot_detection.entries[0].is_bot is False
        assert repos.security_events.events == []

    async def test_missing_environment(self, service, repos) -> None:
        assert await service.run_bot_detection(POLL_ID, None, InteractionSignals()) is True
        assert repos.bot_detection.entries[0].device_fingerprint == "unknown"

    @pytest.mark.parametrize(
        ("policy", "expected"),
        [(FailurePolicy.OPEN, False), (FailurePolicy.CLOSED, True)],
    )
    async def test_internal_error_follows_failure_policy(
        self, make_service, repos, environment, policy: FailurePolicy, expected: bool
    ) -> None:
        repos.bot_detection.create = AsyncMock(side_effect=ConnectionError("datastore unreachable"))
        service = make_service(failure_policy=policy)

        result = await service.run_bot_detection(POLL_ID, environment, InteractionSignals(webdriver=True))

        assert result is expected

