"""
Vote log model.

Append-only audit trail of accepted vote attempts. It is the sole data
source for risk scoring and rate limiting, so rows are never updated.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import DateTime, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from pollguard.db.base import Base


class PollVoteLog(Base):
    """
    One row per successfully logged vote.

    hashed_identity is a rotating pseudo-identity derived from client
    signals, not a network address.
    """

    __tablename__ = "poll_vote_log"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    poll_id: Mapped[str] = mapped_column(String(128), index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)

    hashed_identity: Mapped[str] = mapped_column(String(64), index=True)
    device_fingerprint: Mapped[str] = mapped_column(String(64), index=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    vote_option: Mapped[int] = mapped_column(Integer)
    region: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    session_id: Mapped[str] = mapped_column(String(64), index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        index=True,
    )

    __table_args__ = (
        Index("ix_poll_vote_log_poll_created", "poll_id", "created_at"),
        Index("ix_poll_vote_log_poll_identity", "poll_id", "hashed_identity"),
        Index("ix_poll_vote_log_poll_session", "poll_id", "session_id"),
    )
