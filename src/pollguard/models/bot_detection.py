"""Bot detection audit log model."""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from pollguard.db.base import Base


class PollBotDetectionLog(Base):
    """One row per bot-heuristic run, whatever the verdict."""

    __tablename__ = "poll_bot_detection_logs"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    poll_id: Mapped[str] = mapped_column(String(128), index=True)
    is_bot: Mapped[bool] = mapped_column(Boolean, index=True)
    confidence_score: Mapped[int] = mapped_column(Integer)
    detection_reasons: Mapped[list[str]] = mapped_column(JSON, default=list)
    device_fingerprint: Mapped[str] = mapped_column(String(64))
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        index=True,
    )
