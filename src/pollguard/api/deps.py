"""
Shared dependencies for API endpoints.

Includes:
- Repository selection (PostgreSQL session per request, or the process-wide
  in-memory store)
- Fraud-protection and poll security service construction
"""

from functools import lru_cache
from typing import Annotated, AsyncGenerator

import structlog
from fastapi import Depends

from pollguard.db.session import session_scope
from pollguard.repositories.memory import memory_repositories
from pollguard.repositories.provider import FraudRepositories, is_memory_backend, sql_repositories
from pollguard.services.captcha import CaptchaVerifier, TurnstileClient
from pollguard.services.fraud_protection import FraudProtectionService
from pollguard.services.poll_security import PollSecurityService

logger = structlog.get_logger(__name__)


@lru_cache
def get_memory_repositories() -> FraudRepositories:
    """Process-wide in-memory store."""
    logger.info("memory_repositories_created")
    return memory_repositories()


@lru_cache
def get_captcha_verifier() -> CaptchaVerifier:
    """Shared verifier so single-use token tracking spans requests."""
    return CaptchaVerifier()


@lru_cache
def get_turnstile_client() -> TurnstileClient:
    return TurnstileClient()


async def get_repositories() -> AsyncGenerator[FraudRepositories, None]:
    """Repositories for one request, committed when the request succeeds."""
    if is_memory_backend():
        yield get_memory_repositories()
        return

    async with session_scope() as db:
        yield sql_repositories(db)


async def get_fraud_protection_service(
    repositories: Annotated[FraudRepositories, Depends(get_repositories)],
    captcha_verifier: Annotated[CaptchaVerifier, Depends(get_captcha_verifier)],
) -> FraudProtectionService:
    return FraudProtectionService(repositories, captcha_verifier=captcha_verifier)


async def get_poll_security_service(
    repositories: Annotated[FraudRepositories, Depends(get_repositories)],
) -> PollSecurityService:
    return PollSecurityService(repositories)
