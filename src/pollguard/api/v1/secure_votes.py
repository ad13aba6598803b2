"""
Fraud-protected voting endpoints.

The voting UI calls these around every vote:
1. ``POST /{poll_id}/bot-check`` with interaction signals
2. ``POST /{poll_id}/validate`` before enabling submission
3. ``POST /{poll_id}/votes`` once the vote has been cast

When a CAPTCHA is required, ``POST /{poll_id}/captcha`` exchanges a solved
Turnstile challenge for the ``captcha_token`` sent to ``validate``.

Poll administrators read the security dashboard endpoints.
"""

from typing import Annotated, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, Field

from pollguard.api.deps import (
    get_captcha_verifier,
    get_fraud_protection_service,
    get_poll_security_service,
    get_turnstile_client,
)
from pollguard.schemas.client import ClientEnvironment, InteractionSignals
from pollguard.schemas.fraud import PollSecurityStats, SecurityFeedItem, VoteValidationResult
from pollguard.services.bot_detection import InteractionEvent, InteractionSignalCollector
from pollguard.services.captcha import CaptchaVerifier, TurnstileClient
from pollguard.services.fraud_protection import FraudProtectionService
from pollguard.services.poll_security import PollSecurityService
from pollguard.services.session_store import CookieSessionIdStore

logger = structlog.get_logger(__name__)

router = APIRouter()


# =============================================================================
# Schemas
# =============================================================================


class ValidateVoteRequest(BaseModel):
    """Vote attempt to validate."""

    environment: Optional[ClientEnvironment] = None
    user_id: Optional[str] = Field(None, max_length=128)
    captcha_token: Optional[str] = Field(None, max_length=4096)


class LogVoteRequest(BaseModel):
    """Metadata of a vote that has been cast."""

    environment: Optional[ClientEnvironment] = None
    option_index: int = Field(..., ge=0)
    user_id: Optional[str] = Field(None, max_length=128)
    region: Optional[str] = Field(None, max_length=100)


class LogVoteResponse(BaseModel):
    logged: bool


class BotCheckRequest(BaseModel):
    """
    Interaction data for bot detection.

    Send either a pre-aggregated ``signals`` snapshot or the raw ``events``
    recorded by the page (aggregated server-side).
    """

    environment: Optional[ClientEnvironment] = None
    signals: Optional[InteractionSignals] = None
    events: Optional[list[InteractionEvent]] = Field(None, max_length=10_000)


class BotCheckResponse(BaseModel):
    is_bot: bool


class AcknowledgeAlertResponse(BaseModel):
    acknowledged: bool


class CaptchaTokenRequest(BaseModel):
    """Turnstile response produced by the widget on the voting page."""

    response: str = Field(..., min_length=1, max_length=2048)


class CaptchaTokenResponse(BaseModel):
    captcha_token: str


def _signals_from_request(body: BotCheckRequest) -> InteractionSignals:
    if body.signals is not None:
        return body.signals
    if body.events is None:
        # No instrumentation buffers at all
        return InteractionSignals()

    collector = InteractionSignalCollector()
    collector.record_events(body.events)
    return collector.snapshot()


# =============================================================================
# Voting flow
# =============================================================================


@router.post("/{poll_id}/validate", response_model=VoteValidationResult)
async def validate_vote(
    poll_id: str,
    body: ValidateVoteRequest,
    request: Request,
    response: Response,
    service: Annotated[FraudProtectionService, Depends(get_fraud_protection_service)],
) -> VoteValidationResult:
    """Decide whether the caller may vote in the poll."""
    session_store = CookieSessionIdStore(request, response)
    return await service.validate_vote(
        poll_id,
        body.environment,
        session_store,
        user_id=body.user_id,
        captcha_token=body.captcha_token,
    )


@router.post("/{poll_id}/votes", response_model=LogVoteResponse)
async def log_vote(
    poll_id: str,
    body: LogVoteRequest,
    request: Request,
    response: Response,
    service: Annotated[FraudProtectionService, Depends(get_fraud_protection_service)],
) -> LogVoteResponse:
    """Record a cast vote in the vote log."""
    session_store = CookieSessionIdStore(request, response)
    logged = await service.log_vote(
        poll_id,
        body.option_index,
        body.environment,
        session_store,
        user_id=body.user_id,
        region=body.region,
    )
    return LogVoteResponse(logged=logged)


@router.post("/{poll_id}/bot-check", response_model=BotCheckResponse)
async def bot_check(
    poll_id: str,
    body: BotCheckRequest,
    service: Annotated[FraudProtectionService, Depends(get_fraud_protection_service)],
) -> BotCheckResponse:
    """Run the bot heuristics for the caller."""
    is_bot = await service.run_bot_detection(poll_id, body.environment, _signals_from_request(body))
    return BotCheckResponse(is_bot=is_bot)


@router.post("/{poll_id}/captcha", response_model=CaptchaTokenResponse)
async def issue_captcha_token(
    poll_id: str,
    body: CaptchaTokenRequest,
    request: Request,
    turnstile: Annotated[TurnstileClient, Depends(get_turnstile_client)],
    verifier: Annotated[CaptchaVerifier, Depends(get_captcha_verifier)],
) -> CaptchaTokenResponse:
    """Exchange a solved Turnstile challenge for a vote CAPTCHA token."""
    if not turnstile.configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="CAPTCHA provider is not configured",
        )

    client_ip = request.client.host if request.client else None
    if not await turnstile.verify(body.response, client_ip):
        logger.warning("captcha_challenge_failed", poll_id=poll_id[:64])
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="CAPTCHA verification failed",
        )

    return CaptchaTokenResponse(captcha_token=verifier.issue_token())


# =============================================================================
# Security dashboard
# =============================================================================


@router.get("/{poll_id}/security/stats", response_model=PollSecurityStats)
async def get_security_stats(
    poll_id: str,
    service: Annotated[PollSecurityService, Depends(get_poll_security_service)],
) -> PollSecurityStats:
    """Vote, alert and bot counts for the poll."""
    return await service.get_poll_stats(poll_id)


@router.get("/{poll_id}/security/events", response_model=list[SecurityFeedItem])
async def get_security_events(
    poll_id: str,
    service: Annotated[PollSecurityService, Depends(get_poll_security_service)],
) -> list[SecurityFeedItem]:
    """Fraud alerts and bot detections, newest first."""
    return await service.get_security_events(poll_id)


@router.post(
    "/{poll_id}/security/alerts/{alert_id}/acknowledge",
    response_model=AcknowledgeAlertResponse,
)
async def acknowledge_alert(
    poll_id: str,
    alert_id: str,
    service: Annotated[PollSecurityService, Depends(get_poll_security_service)],
) -> AcknowledgeAlertResponse:
    """Mark a fraud alert as resolved."""
    if not await service.acknowledge_alert(alert_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Alert not found or already acknowledged",
        )
    logger.info("alert_acknowledged_via_api", poll_id=poll_id, alert_id=alert_id)
    return AcknowledgeAlertResponse(acknowledged=True)
