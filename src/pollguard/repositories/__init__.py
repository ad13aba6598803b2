"""Repository modules for database access."""

from pollguard.repositories.bot_detection_repository import BotDetectionLogRepository
from pollguard.repositories.fraud_alert_repository import FraudAlertRepository
from pollguard.repositories.fraud_settings_repository import FraudSettingsRepository
from pollguard.repositories.security_event_repository import SecurityEventRepository
from pollguard.repositories.vote_log_repository import VoteLogRepository

__all__ = [
    "VoteLogRepository",
    "FraudSettingsRepository",
    "BotDetectionLogRepository",
    "FraudAlertRepository",
    "SecurityEventRepository",
]
