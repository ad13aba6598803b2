"""
Vote gate.

Decides whether a vote attempt may proceed, records accepted votes and runs
the bot heuristics. Every decision branch emits a security event.

Decision order for ``validate_vote`` (first failing step wins):
1. Threat-scan the poll identifier
2. Load the poll's fraud settings
3. Fingerprint, identity hash and risk score
4. CAPTCHA gate
5. Hard block on high risk
6. Skip rate limiting when the poll has no settings or disables it
7. Session id
8. Identity-hash limit (trailing hour)
9. Session limit (all time)
10. One vote per authenticated user (all time)
11. Allow

Infrastructure failures are resolved by the configured ``FailurePolicy``.
"""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import structlog

from pollguard.core.config import FailurePolicy, IdentityWindow, settings
from pollguard.core.security import detect_threats, sanitize_input
from pollguard.repositories.provider import FraudRepositories
from pollguard.schemas.client import ClientEnvironment, InteractionSignals
from pollguard.schemas.fraud import BotDetectionLogEntry, FraudSettings, Severity, VoteValidationResult
from pollguard.schemas.vote_log import LimitViolation, VoteLimits, VoteLogEntry
from pollguard.services.bot_detection import BotDetector
from pollguard.services.captcha import CaptchaVerifier
from pollguard.services.fingerprint import generate_device_fingerprint, hash_client_identity
from pollguard.services.fraud_patterns import FraudPatternDetector
from pollguard.services.risk_scoring import RiskScorer
from pollguard.services.security_events import SecurityEventLogger, SecurityEventType
from pollguard.services.session_store import SessionIdStore

logger = structlog.get_logger(__name__)

IDENTITY_LIMIT_WINDOW = timedelta(hours=1)
THREAT_RISK_SCORE = 100

REASON_INVALID_POLL = "Invalid poll identifier"
REASON_CAPTCHA_MISSING = "Please complete the CAPTCHA verification to vote"
REASON_CAPTCHA_EXPIRED = "CAPTCHA verification expired. Please verify again"
REASON_CAPTCHA_FAILED = "CAPTCHA verification failed. Please try again"
REASON_HIGH_RISK = "Vote blocked due to suspicious activity"
REASON_ALREADY_VOTED = "You have already voted in this poll"
REASON_UNAVAILABLE = "Vote validation is temporarily unavailable. Please try again later"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def identity_limit_reason(limit: int) -> str:
    return f"Vote limit reached: maximum {limit} vote(s) per device per hour"


def session_limit_reason(limit: int) -> str:
    return f"Vote limit reached: maximum {limit} vote(s) per session"


class FraudProtectionService:
    """
    Fraud-protection entry points for the voting flow.

    All collaborators are injectable; anything not supplied is built from
    application settings.
    """

    def __init__(
        self,
        repositories: FraudRepositories,
        *,
        risk_scorer: Optional[RiskScorer] = None,
        bot_detector: Optional[BotDetector] = None,
        captcha_verifier: Optional[CaptchaVerifier] = None,
        pattern_detector: Optional[FraudPatternDetector] = None,
        failure_policy: Optional[FailurePolicy] = None,
        identity_window: Optional[IdentityWindow] = None,
        captcha_threshold: Optional[int] = None,
        block_threshold: Optional[int] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.repositories = repositories
        self.clock = clock
        self.risk_scorer = risk_scorer or RiskScorer(repositories.vote_log, clock=clock)
        self.bot_detector = bot_detector or BotDetector()
        self.captcha_verifier = captcha_verifier or CaptchaVerifier(clock=clock)
        self.pattern_detector = pattern_detector or FraudPatternDetector(
            repositories.vote_log, repositories.fraud_alerts, clock=clock
        )
        self.events = SecurityEventLogger(repositories.security_events)

        self.failure_policy = failure_policy or settings.FRAUD_FAILURE_POLICY
        self.identity_window = identity_window or settings.FRAUD_IDENTITY_WINDOW
        self.captcha_threshold = (
            settings.CAPTCHA_RISK_THRESHOLD if captcha_threshold is None else captcha_threshold
        )
        self.block_threshold = settings.BLOCK_RISK_THRESHOLD if block_threshold is None else block_threshold

        self._in_flight = 0

    @property
    def loading(self) -> bool:
        """True while any validation is awaiting the datastore."""
        return self._in_flight > 0

    def _identity(self, environment: Optional[ClientEnvironment], session_store: SessionIdStore) -> str:
        session_id = None
        if self.identity_window == IdentityWindow.SESSION:
            session_id = session_store.get_or_create()
        return hash_client_identity(
            environment,
            window=self.identity_window,
            today=self.clock().date(),
            session_id=session_id,
        )

    # =========================================================================
    # Vote validation
    # =========================================================================

    async def validate_vote(
        self,
        poll_id: str,
        environment: Optional[ClientEnvironment],
        session_store: SessionIdStore,
        user_id: Optional[str] = None,
        captcha_token: Optional[str] = None,
    ) -> VoteValidationResult:
        """Run the full decision procedure for one vote attempt."""
        self._in_flight += 1
        try:
            return await self._validate(poll_id, environment, session_store, user_id, captcha_token)
        except Exception as e:
            logger.exception("vote_validation_failed", poll_id=poll_id[:64], error=str(e))
            await self.events.log(
                SecurityEventType.VALIDATION_ERROR,
                "poll",
                sanitize_input(poll_id),
                {"error": type(e).__name__, "failure_policy": self.failure_policy.value},
                Severity.MEDIUM,
            )
            if self.failure_policy == FailurePolicy.OPEN:
                return VoteValidationResult(can_vote=True)
            return VoteValidationResult(can_vote=False, reason=REASON_UNAVAILABLE)
        finally:
            self._in_flight -= 1

    async def _validate(
        self,
        raw_poll_id: str,
        environment: Optional[ClientEnvironment],
        session_store: SessionIdStore,
        user_id: Optional[str],
        captcha_token: Optional[str],
    ) -> VoteValidationResult:
        threats = detect_threats(raw_poll_id)
        poll_id = sanitize_input(raw_poll_id)
        if threats:
            await self.events.log(
                SecurityEventType.THREAT_DETECTED,
                "poll",
                poll_id,
                {"threats": threats},
                Severity.HIGH,
            )
            return VoteValidationResult(
                can_vote=False, reason=REASON_INVALID_POLL, risk_score=THREAT_RISK_SCORE
            )

        fraud_settings = await self.repositories.fraud_settings.get_by_poll(poll_id)

        fingerprint = generate_device_fingerprint(environment)
        identity = self._identity(environment, session_store)
        assessment = await self.risk_scorer.assess(poll_id, fingerprint, identity, user_id)
        risk_score = assessment.risk_score
        details: dict[str, Any] = {
            "risk_score": risk_score,
            "risk_factors": assessment.risk_factors,
            "fingerprint": fingerprint[:8],
        }

        captcha_required = bool(fraud_settings and fraud_settings.enable_captcha) or (
            risk_score >= self.captcha_threshold
        )
        if captcha_required:
            denied = await self._check_captcha(poll_id, captcha_token, risk_score, details)
            if denied is not None:
                return denied

        if risk_score >= self.block_threshold:
            await self.events.log(
                SecurityEventType.HIGH_RISK_BLOCKED, "poll", poll_id, details, Severity.CRITICAL
            )
            return VoteValidationResult(can_vote=False, reason=REASON_HIGH_RISK, risk_score=risk_score)

        if fraud_settings is None or not fraud_settings.enable_rate_limiting:
            return VoteValidationResult(can_vote=True, risk_score=risk_score)

        session_id = session_store.get_or_create()
        reason = await self._rate_limit_reason(fraud_settings, identity, session_id, user_id)
        if reason is not None:
            await self.events.log(
                SecurityEventType.RATE_LIMIT_EXCEEDED,
                "poll",
                poll_id,
                {**details, "reason": reason},
                Severity.MEDIUM,
            )
            return VoteValidationResult(can_vote=False, reason=reason, risk_score=risk_score)

        await self.events.log(SecurityEventType.VOTE_VALIDATED, "poll", poll_id, details, Severity.LOW)
        return VoteValidationResult(can_vote=True, risk_score=risk_score)

    async def _check_captcha(
        self,
        poll_id: str,
        captcha_token: Optional[str],
        risk_score: int,
        details: dict[str, Any],
    ) -> Optional[VoteValidationResult]:
        """Return a denial when the CAPTCHA gate is not satisfied, else None."""
        if not captcha_token:
            severity = Severity.HIGH if risk_score >= self.block_threshold else Severity.MEDIUM
            await self.events.log(SecurityEventType.CAPTCHA_REQUIRED, "poll", poll_id, details, severity)
            return VoteValidationResult(
                can_vote=False,
                reason=REASON_CAPTCHA_MISSING,
                risk_score=risk_score,
                requires_captcha=True,
            )

        check = self.captcha_verifier.verify(captcha_token)
        if check.valid:
            return None

        await self.events.log(
            SecurityEventType.CAPTCHA_FAILED,
            "poll",
            poll_id,
            {**details, "captcha_reason": check.reason},
            Severity.MEDIUM,
        )
        reason = REASON_CAPTCHA_EXPIRED if check.reason == "expired" else REASON_CAPTCHA_FAILED
        return VoteValidationResult(
            can_vote=False, reason=reason, risk_score=risk_score, requires_captcha=True
        )

    async def _rate_limit_reason(
        self,
        fraud_settings: FraudSettings,
        identity: str,
        session_id: str,
        user_id: Optional[str],
    ) -> Optional[str]:
        vote_log = self.repositories.vote_log
        poll_id = fraud_settings.poll_id

        identity_votes = await vote_log.count(
            poll_id, hashed_identity=identity, since=self.clock() - IDENTITY_LIMIT_WINDOW
        )
        if identity_votes >= fraud_settings.max_votes_per_ip:
            return identity_limit_reason(fraud_settings.max_votes_per_ip)

        session_votes = await vote_log.count(poll_id, session_id=session_id)
        if session_votes >= fraud_settings.max_votes_per_session:
            return session_limit_reason(fraud_settings.max_votes_per_session)

        if user_id and await vote_log.count(poll_id, user_id=user_id) > 0:
            return REASON_ALREADY_VOTED

        return None

    # =========================================================================
    # Vote logging
    # =========================================================================

    async def log_vote(
        self,
        poll_id: str,
        option_index: int,
        environment: Optional[ClientEnvironment],
        session_store: SessionIdStore,
        user_id: Optional[str] = None,
        region: Optional[str] = None,
    ) -> bool:
        """
        Record a cast vote and run fraud-pattern detection for the poll.

        Returns True when a vote-log row was written. Never raises: a vote the
        user already cast is not rolled back because its audit row failed.
        """
        try:
            written = await self._write_vote(poll_id, option_index, environment, session_store, user_id, region)
        except Exception as e:
            logger.warning("vote_log_failed", poll_id=poll_id[:64], error=str(e))
            return False

        if not written:
            return False

        try:
            await self.pattern_detector.detect(sanitize_input(poll_id))
        except Exception as e:
            logger.warning("fraud_pattern_detection_failed", poll_id=poll_id[:64], error=str(e))

        return True

    async def _write_vote(
        self,
        raw_poll_id: str,
        option_index: int,
        environment: Optional[ClientEnvironment],
        session_store: SessionIdStore,
        user_id: Optional[str],
        region: Optional[str],
    ) -> bool:
        threats = detect_threats(raw_poll_id)
        poll_id = sanitize_input(raw_poll_id)
        if threats:
            await self.events.log(
                SecurityEventType.THREAT_DETECTED, "poll", poll_id, {"threats": threats}, Severity.HIGH
            )
            return False

        entry = VoteLogEntry(
            poll_id=poll_id,
            user_id=user_id,
            hashed_identity=self._identity(environment, session_store),
            device_fingerprint=generate_device_fingerprint(environment),
            user_agent=environment.user_agent if environment else None,
            vote_option=option_index,
            region=region,
            session_id=session_store.get_or_create(),
            created_at=self.clock(),
        )

        fraud_settings = await self.repositories.fraud_settings.get_by_poll(poll_id)
        if fraud_settings is None or not fraud_settings.enable_rate_limiting:
            await self.repositories.vote_log.create(entry)
            return True

        limits = VoteLimits(
            max_votes_per_identity=fraud_settings.max_votes_per_ip,
            identity_window_seconds=int(IDENTITY_LIMIT_WINDOW.total_seconds()),
            max_votes_per_session=fraud_settings.max_votes_per_session,
        )
        violation = await self.repositories.vote_log.insert_if_under_limits(entry, limits)
        if violation is not None:
            await self.events.log(
                SecurityEventType.VOTE_LOG_REJECTED,
                "poll",
                poll_id,
                {"limit": violation.value, "fingerprint": entry.device_fingerprint[:8]},
                Severity.HIGH if violation == LimitViolation.USER else Severity.MEDIUM,
            )
            return False
        return True

    # =========================================================================
    # Bot detection
    # =========================================================================

    async def run_bot_detection(
        self,
        poll_id: str,
        environment: Optional[ClientEnvironment],
        signals: InteractionSignals,
    ) -> bool:
        """Judge whether the client is automated and record the run."""
        try:
            result = self.bot_detector.evaluate(environment, signals)
            fingerprint = generate_device_fingerprint(environment)
            poll_id = sanitize_input(poll_id)

            await self.repositories.bot_detection.create(
                BotDetectionLogEntry(
                    poll_id=poll_id,
                    is_bot=result.is_bot,
                    confidence_score=result.confidence_score,
                    detection_reasons=result.detection_reasons,
                    device_fingerprint=fingerprint,
                    user_agent=environment.user_agent if environment else None,
                    created_at=self.clock(),
                )
            )

            if result.is_bot:
                await self.events.log(
                    SecurityEventType.BOT_DETECTED,
                    "poll",
                    poll_id,
                    {
                        "confidence_score": result.confidence_score,
                        "detection_reasons": result.detection_reasons,
                        "fingerprint": fingerprint[:8],
                    },
                    Severity.HIGH,
                )
            return result.is_bot
        except Exception as e:
            logger.warning("bot_detection_failed", poll_id=poll_id[:64], error=str(e))
            return self.failure_policy == FailurePolicy.CLOSED
