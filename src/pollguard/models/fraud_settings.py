"""Per-poll fraud enforcement settings (maintained by poll administrators)."""

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from pollguard.db.base import Base


class PollFraudSettings(Base):
    """Enforcement configuration for a single poll. Read-only to the vote gate."""

    __tablename__ = "poll_fraud_settings"

    poll_id: Mapped[str] = mapped_column(String(128), primary_key=True)

    enable_captcha: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    enable_rate_limiting: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Ceiling per hashed identity inside a rolling 1-hour window
    max_votes_per_ip: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    # Cumulative ceiling per browser session (no window)
    max_votes_per_session: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
