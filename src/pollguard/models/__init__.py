"""Database models module."""

from pollguard.models.bot_detection import PollBotDetectionLog
from pollguard.models.fraud_alert import PollFraudAlert
from pollguard.models.fraud_settings import PollFraudSettings
from pollguard.models.security_event import SecurityEvent
from pollguard.models.vote_log import PollVoteLog

__all__ = [
    "PollVoteLog",
    "PollFraudSettings",
    "PollBotDetectionLog",
    "PollFraudAlert",
    "SecurityEvent",
]
