"""
Fraud-protection schemas.

Decision results returned by the vote gate plus the audit records the gate
reads and writes.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Severity(str, Enum):
    """Severity of security events and fraud alerts."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FraudSettings(BaseModel):
    """Per-poll enforcement configuration."""

    poll_id: str
    enable_captcha: bool = False
    enable_rate_limiting: bool = True
    max_votes_per_ip: int = Field(1, ge=0)
    max_votes_per_session: int = Field(1, ge=0)

    model_config = {"from_attributes": True}


class RiskAssessment(BaseModel):
    """Risk score with the factors that produced it."""

    risk_score: int = Field(0, ge=0, le=100)
    risk_factors: list[str] = Field(default_factory=list)
    fallback: bool = False  # True when history could not be read


class VoteValidationResult(BaseModel):
    """Decision of the vote gate. ``reason`` is safe to show to the voter."""

    can_vote: bool
    reason: Optional[str] = None
    risk_score: Optional[int] = None
    requires_captcha: bool = False


class BotDetectionResult(BaseModel):
    """Verdict of the heuristic bot checks."""

    is_bot: bool
    confidence_score: int = Field(0, ge=0, le=100)
    detection_reasons: list[str] = Field(default_factory=list)


class BotDetectionLogEntry(BaseModel):
    """Audit row written after every bot detection run."""

    id: Optional[str] = None
    poll_id: str
    is_bot: bool
    confidence_score: int
    detection_reasons: list[str] = Field(default_factory=list)
    device_fingerprint: str
    user_agent: Optional[str] = None
    created_at: datetime = Field(default_factory=_utc_now)

    model_config = {"from_attributes": True}


class SecurityEventRecord(BaseModel):
    """Audit entry emitted at every vote-gate decision branch."""

    id: Optional[str] = None
    event_type: str
    resource_type: str
    resource_id: Optional[str] = None
    details: dict = Field(default_factory=dict)
    severity: Severity = Severity.LOW
    created_at: datetime = Field(default_factory=_utc_now)

    model_config = {"from_attributes": True}


class FraudAlert(BaseModel):
    """Suspicious voting pattern raised by fraud-pattern detection."""

    id: Optional[str] = None
    poll_id: str
    alert_type: str
    alert_severity: Severity
    alert_message: str
    detected_at: datetime = Field(default_factory=_utc_now)
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PollSecurityStats(BaseModel):
    """Security summary for the poll management dashboard."""

    poll_id: str
    total_votes: int = 0
    unique_voters: int = 0
    fraud_alerts: int = 0
    bot_detections: int = 0
    integrity_score: int = 100


class SecurityFeedItem(BaseModel):
    """Fraud alert or bot detection shown in the poll security feed."""

    id: Optional[str] = None
    type: str  # "fraud_alert" | "bot_detection"
    severity: Severity
    description: str
    timestamp: datetime
    resolved: bool = False
