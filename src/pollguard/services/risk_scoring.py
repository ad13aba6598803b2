"""
Vote risk scoring.

The risk score is an additive 0-100 heuristic computed from the trailing hour
of a poll's vote log. Each signal is a named rule returning a delta, so
weights can be tuned or whole rules replaced without touching the vote gate.

Default rules:
1. Device reuse - same fingerprint already voted recently
2. Identity reuse - same client identity hash already voted recently
3. Timing pattern - consecutive votes arriving in quick succession
4. Volume - unusually many votes on the poll in the window
5. Missing signals - client sent no usable fingerprint or identity
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

import structlog

from pollguard.core.config import settings
from pollguard.repositories.provider import VoteLogRepositoryProtocol
from pollguard.schemas.fraud import RiskAssessment
from pollguard.schemas.vote_log import VoteLogEntry
from pollguard.services.fingerprint import is_missing_signal

logger = structlog.get_logger(__name__)

RISK_WINDOW = timedelta(hours=1)
MIN_RISK_SCORE = 0
MAX_RISK_SCORE = 100


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RiskContext:
    """Everything a rule may inspect."""

    recent_votes: list[VoteLogEntry]
    device_fingerprint: str
    hashed_identity: str
    user_id: Optional[str] = None


@dataclass
class RiskDelta:
    """Points a rule contributes, with a human-readable reason when non-zero."""

    points: int = 0
    reasons: list[str] = field(default_factory=list)


class RiskRule(Protocol):
    """A named scoring rule."""

    name: str

    def evaluate(self, context: RiskContext) -> RiskDelta: ...


# =============================================================================
# Default rules
# =============================================================================


class DeviceReuseRule:
    """Penalize a fingerprint that already voted in the window."""

    name = "device_reuse"

    def __init__(self, high_count: int = 3, high_points: int = 40, low_count: int = 1, low_points: int = 15):
        self.high_count = high_count
        self.high_points = high_points
        self.low_count = low_count
        self.low_points = low_points

    def evaluate(self, context: RiskContext) -> RiskDelta:
        if is_missing_signal(context.device_fingerprint):
            return RiskDelta()

        matches = sum(1 for v in context.recent_votes if v.device_fingerprint == context.device_fingerprint)
        if matches >= self.high_count:
            return RiskDelta(self.high_points, [f"Device voted {matches} times in the last hour"])
        if matches >= self.low_count:
            return RiskDelta(self.low_points, [f"Device voted {matches} time(s) in the last hour"])
        return RiskDelta()


class IdentityReuseRule:
    """Penalize a client identity hash that already voted in the window."""

    name = "identity_reuse"

    def __init__(self, high_count: int = 4, high_points: int = 35, low_count: int = 2, low_points: int = 20):
        self.high_count = high_count
        self.high_points = high_points
        self.low_count = low_count
        self.low_points = low_points

    def evaluate(self, context: RiskContext) -> RiskDelta:
        if is_missing_signal(context.hashed_identity):
            return RiskDelta()

        matches = sum(1 for v in context.recent_votes if v.hashed_identity == context.hashed_identity)
        if matches >= self.high_count:
            return RiskDelta(self.high_points, [f"Client identity voted {matches} times in the last hour"])
        if matches >= self.low_count:
            return RiskDelta(self.low_points, [f"Client identity voted {matches} times in the last hour"])
        return RiskDelta()


class TimingPatternRule:
    """
    Penalize every pair of consecutive votes that arrived too close together.

    Additive per pair, so bursty traffic compounds quickly to the ceiling.
    """

    name = "timing_pattern"

    def __init__(
        self,
        burst_gap: timedelta = timedelta(seconds=5),
        burst_points: int = 30,
        rapid_gap: timedelta = timedelta(seconds=30),
        rapid_points: int = 15,
    ):
        self.burst_gap = burst_gap
        self.burst_points = burst_points
        self.rapid_gap = rapid_gap
        self.rapid_points = rapid_points

    def evaluate(self, context: RiskContext) -> RiskDelta:
        timestamps = sorted(v.created_at for v in context.recent_votes)
        points = 0
        bursts = rapid = 0

        for previous, current in zip(timestamps, timestamps[1:]):
            gap = current - previous
            if gap < self.burst_gap:
                points += self.burst_points
                bursts += 1
            elif gap < self.rapid_gap:
                points += self.rapid_points
                rapid += 1

        reasons = []
        if bursts:
            reasons.append(f"{bursts} vote(s) within {self.burst_gap.total_seconds():.0f}s of the previous")
        if rapid:
            reasons.append(f"{rapid} vote(s) within {self.rapid_gap.total_seconds():.0f}s of the previous")
        return RiskDelta(points, reasons)


class VolumeRule:
    """Penalize high overall vote volume on the poll."""

    name = "volume"

    def __init__(self, high_count: int = 20, high_points: int = 25, low_count: int = 10, low_points: int = 15):
        self.high_count = high_count
        self.high_points = high_points
        self.low_count = low_count
        self.low_points = low_points

    def evaluate(self, context: RiskContext) -> RiskDelta:
        total = len(context.recent_votes)
        if total > self.high_count:
            return RiskDelta(self.high_points, [f"High poll volume ({total} votes in the last hour)"])
        if total > self.low_count:
            return RiskDelta(self.low_points, [f"Elevated poll volume ({total} votes in the last hour)"])
        return RiskDelta()


class MissingSignalRule:
    """Penalize clients that withheld their fingerprint or identity signals."""

    name = "missing_signals"

    def __init__(self, fingerprint_points: int = 20, identity_points: int = 15):
        self.fingerprint_points = fingerprint_points
        self.identity_points = identity_points

    def evaluate(self, context: RiskContext) -> RiskDelta:
        delta = RiskDelta()
        if is_missing_signal(context.device_fingerprint):
            delta.points += self.fingerprint_points
            delta.reasons.append("No device fingerprint")
        if is_missing_signal(context.hashed_identity):
            delta.points += self.identity_points
            delta.reasons.append("No client identity")
        return delta


def default_rules() -> list[RiskRule]:
    """The standard rule set, in evaluation order."""
    return [
        DeviceReuseRule(),
        IdentityReuseRule(),
        TimingPatternRule(),
        VolumeRule(),
        MissingSignalRule(),
    ]


# =============================================================================
# Scorer
# =============================================================================


class RiskScorer:
    """Loads recent vote history and runs the scoring rules over it."""

    def __init__(
        self,
        vote_log: VoteLogRepositoryProtocol,
        rules: Optional[Sequence[RiskRule]] = None,
        window: timedelta = RISK_WINDOW,
        fallback_score: Optional[int] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.vote_log = vote_log
        self.rules = list(rules) if rules is not None else default_rules()
        self.window = window
        self.fallback_score = settings.RISK_FALLBACK_SCORE if fallback_score is None else fallback_score
        self.clock = clock

    def score(self, context: RiskContext) -> RiskAssessment:
        """Run every rule over an already-loaded context."""
        total = 0
        factors: list[str] = []
        for rule in self.rules:
            delta = rule.evaluate(context)
            total += delta.points
            factors.extend(delta.reasons)

        return RiskAssessment(
            risk_score=max(MIN_RISK_SCORE, min(total, MAX_RISK_SCORE)),
            risk_factors=factors,
        )

    async def assess(
        self,
        poll_id: str,
        device_fingerprint: str,
        hashed_identity: str,
        user_id: Optional[str] = None,
    ) -> RiskAssessment:
        """
        Score a vote attempt against the poll's trailing window of votes.

        If the history cannot be read, a fixed moderate score is returned
        instead of failing the caller.
        """
        try:
            recent = await self.vote_log.find(poll_id, since=self.clock() - self.window)
        except Exception as e:
            logger.warning("risk_history_unavailable", poll_id=poll_id, error=str(e))
            return RiskAssessment(
                risk_score=self.fallback_score,
                risk_factors=["Vote history unavailable"],
                fallback=True,
            )

        context = RiskContext(
            recent_votes=recent,
            device_fingerprint=device_fingerprint,
            hashed_identity=hashed_identity,
            user_id=user_id,
        )
        assessment = self.score(context)

        logger.debug(
            "risk_scored",
            poll_id=poll_id,
            risk_score=assessment.risk_score,
            recent_votes=len(recent),
            fingerprint=device_fingerprint[:8],
        )
        return assessment

    async def calculate_risk_score(
        self,
        poll_id: str,
        device_fingerprint: str,
        hashed_identity: str,
        user_id: Optional[str] = None,
    ) -> int:
        """Risk score only, 0-100."""
        assessment = await self.assess(poll_id, device_fingerprint, hashed_identity, user_id)
        return assessment.risk_score
