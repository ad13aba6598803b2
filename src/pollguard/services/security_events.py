"""
Security event logging.

Every vote-gate decision branch emits an event. Events are written to the
structured log immediately and persisted to the security event table when a
repository is available. Persistence failures never affect the decision.
"""

from typing import Any, Optional

import structlog

from pollguard.repositories.provider import SecurityEventRepositoryProtocol
from pollguard.schemas.fraud import SecurityEventRecord, Severity

logger = structlog.get_logger(__name__)


class SecurityEventType:
    """Event type names."""

    THREAT_DETECTED = "threat_detected"
    CAPTCHA_REQUIRED = "captcha_required"
    CAPTCHA_FAILED = "captcha_failed"
    HIGH_RISK_BLOCKED = "high_risk_blocked"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    VOTE_VALIDATED = "vote_validated"
    VALIDATION_ERROR = "validation_error"
    BOT_DETECTED = "bot_detected"
    VOTE_LOG_REJECTED = "vote_log_rejected"


class SecurityEventLogger:
    """Emits security events to the log and the audit table."""

    def __init__(self, repository: Optional[SecurityEventRepositoryProtocol] = None):
        self.repository = repository

    async def log(
        self,
        event_type: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        severity: Severity = Severity.LOW,
    ) -> None:
        """Record one security event."""
        details = details or {}

        if severity == Severity.LOW:
            log = logger.info
        elif severity == Severity.MEDIUM:
            log = logger.warning
        else:
            log = logger.error

        log(
            "security_event",
            event_type=event_type,
            resource_type=resource_type,
            resource_id=resource_id,
            severity=severity.value,
            details=details,
        )

        if self.repository is None:
            return

        try:
            await self.repository.create(
                SecurityEventRecord(
                    event_type=event_type,
                    resource_type=resource_type,
                    resource_id=resource_id,
                    details=details,
                    severity=severity,
                )
            )
        except Exception as e:
            logger.warning("security_event_persist_failed", event_type=event_type, error=str(e))
