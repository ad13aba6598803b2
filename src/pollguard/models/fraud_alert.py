"""Fraud alerts raised by vote-log pattern detection."""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from pollguard.db.base import Base


class PollFraudAlert(Base):
    """
    Suspicious voting pattern detected for a poll.

    Alerts stay open until a poll administrator acknowledges them.
    """

    __tablename__ = "poll_fraud_alerts"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    poll_id: Mapped[str] = mapped_column(String(128), index=True)
    alert_type: Mapped[str] = mapped_column(String(50))
    alert_severity: Mapped[str] = mapped_column(String(20))
    alert_message: Mapped[str] = mapped_column(Text)

    detected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        index=True,
    )
    acknowledged: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_poll_fraud_alerts_poll_open", "poll_id", "acknowledged"),)
