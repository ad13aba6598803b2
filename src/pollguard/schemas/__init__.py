"""Schemas module initialization."""

from pollguard.schemas.client import ClientEnvironment, InteractionSignals
from pollguard.schemas.fraud import (
    BotDetectionLogEntry,
    BotDetectionResult,
    FraudAlert,
    FraudSettings,
    PollSecurityStats,
    RiskAssessment,
    SecurityEventRecord,
    SecurityFeedItem,
    Severity,
    VoteValidationResult,
)
from pollguard.schemas.vote_log import LimitViolation, VoteLimits, VoteLogEntry

__all__ = [
    "ClientEnvironment",
    "InteractionSignals",
    "VoteLogEntry",
    "VoteLimits",
    "LimitViolation",
    "FraudSettings",
    "RiskAssessment",
    "VoteValidationResult",
    "BotDetectionResult",
    "BotDetectionLogEntry",
    "SecurityEventRecord",
    "FraudAlert",
    "PollSecurityStats",
    "SecurityFeedItem",
    "Severity",
]
