"""Vote log records and rate-limit parameters."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class VoteLogEntry(BaseModel):
    """One accepted vote attempt. Immutable once written."""

    id: Optional[str] = None
    poll_id: str
    user_id: Optional[str] = None
    hashed_identity: str
    device_fingerprint: str
    user_agent: Optional[str] = None
    vote_option: int
    region: Optional[str] = None
    session_id: str
    created_at: datetime = Field(default_factory=_utc_now)

    model_config = {"from_attributes": True, "frozen": True}


class LimitViolation(str, Enum):
    """Which vote ceiling an attempt would exceed."""

    IDENTITY = "identity"
    SESSION = "session"
    USER = "user"


class VoteLimits(BaseModel):
    """Ceilings enforced when a vote is written."""

    max_votes_per_identity: Optional[int] = None
    identity_window_seconds: int = 3600
    max_votes_per_session: Optional[int] = None
    one_vote_per_user: bool = True
