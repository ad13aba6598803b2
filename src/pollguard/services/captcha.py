"""
CAPTCHA token verification.

A token is a base64 string decoding to JSON ``{"verified": bool,
"timestamp": epoch-ms}``. Without a signing key the payload is trusted as-is
(anyone can mint one client-side). With ``CAPTCHA_SIGNING_KEY`` configured,
tokens must carry an HMAC-SHA256 ``sig`` issued by this service and are
accepted only once. The service issues a signed token after a Cloudflare
Turnstile challenge has been verified server-side.
"""

import base64
import binascii
import hashlib
import hmac
import json
import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
import structlog

from pollguard.core.config import settings
from pollguard.core.exceptions import CaptchaTokenError, PollGuardError

logger = structlog.get_logger(__name__)

# Tolerated clock skew for timestamps in the future
MAX_FUTURE_SKEW_MS = 60_000


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-finite number {name}")


@dataclass
class CaptchaCheck:
    """Outcome of verifying one token."""

    valid: bool
    reason: Optional[str] = None  # malformed | invalid_signature | not_verified | expired | replayed


class CaptchaVerifier:
    """Decodes, verifies and (optionally) signs CAPTCHA tokens."""

    def __init__(
        self,
        signing_key: Optional[str] = None,
        max_age_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.signing_key = signing_key if signing_key is not None else settings.CAPTCHA_SIGNING_KEY
        self.max_age_ms = (
            max_age_seconds if max_age_seconds is not None else settings.CAPTCHA_MAX_AGE_SECONDS
        ) * 1000
        self.clock = clock
        # signature -> expiry (epoch ms)
        self._used_signatures: dict[str, int] = {}

    def _now_ms(self) -> int:
        return int(self.clock().timestamp() * 1000)

    def _sign(self, payload: dict[str, Any]) -> str:
        if not self.signing_key:
            raise PollGuardError("CAPTCHA signing key is not configured")
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hmac.new(self.signing_key.encode(), canonical.encode(), hashlib.sha256).hexdigest()

    @staticmethod
    def decode(token: str) -> dict[str, Any]:
        """Decode a token into its JSON payload."""
        try:
            padded = token.strip() + "=" * (-len(token.strip()) % 4)
            raw = base64.b64decode(padded.replace("-", "+").replace("_", "/"), validate=True)
            payload = json.loads(raw.decode("utf-8"), parse_constant=_reject_constant)
        except (binascii.Error, ValueError, UnicodeDecodeError) as e:
            raise CaptchaTokenError("malformed") from e

        if not isinstance(payload, dict):
            raise CaptchaTokenError("malformed")
        return payload

    def issue_token(self, verified: bool = True, timestamp_ms: Optional[int] = None) -> str:
        """Create a token; signed when a signing key is configured."""
        payload: dict[str, Any] = {
            "verified": verified,
            "timestamp": timestamp_ms if timestamp_ms is not None else self._now_ms(),
        }
        if self.signing_key:
            payload["sig"] = self._sign(payload)
        return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")

    def _purge_used(self, now_ms: int) -> None:
        expired = [sig for sig, expires in self._used_signatures.items() if expires <= now_ms]
        for sig in expired:
            del self._used_signatures[sig]

    def verify(self, token: str) -> CaptchaCheck:
        """
        Verify a token.

        Rejects tokens that do not decode, are not marked verified, or whose
        embedded timestamp is older than the maximum age.
        """
        try:
            payload = self.decode(token)
        except CaptchaTokenError as e:
            return CaptchaCheck(valid=False, reason=e.reason)

        signature = None
        if self.signing_key:
            signature = payload.pop("sig", None)
            if not isinstance(signature, str) or not hmac.compare_digest(
                signature.encode(), self._sign(payload).encode()
            ):
                return CaptchaCheck(valid=False, reason="invalid_signature")

        if payload.get("verified") is not True:
            return CaptchaCheck(valid=False, reason="not_verified")

        timestamp = payload.get("timestamp")
        if (
            not isinstance(timestamp, (int, float))
            or isinstance(timestamp, bool)
            or not math.isfinite(timestamp)
        ):
            return CaptchaCheck(valid=False, reason="malformed")

        now_ms = self._now_ms()
        if now_ms - timestamp > self.max_age_ms:
            return CaptchaCheck(valid=False, reason="expired")
        if timestamp - now_ms > MAX_FUTURE_SKEW_MS:
            return CaptchaCheck(valid=False, reason="malformed")

        if signature is not None:
            self._purge_used(now_ms)
            if signature in self._used_signatures:
                logger.warning("captcha_token_replayed", signature=signature[:8])
                return CaptchaCheck(valid=False, reason="replayed")
            self._used_signatures[signature] = int(timestamp) + self.max_age_ms

        return CaptchaCheck(valid=True)


class TurnstileClient:
    """Server-side verification of Cloudflare Turnstile responses."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        verify_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.TURNSTILE_SECRET_KEY
        self.verify_url = verify_url or settings.TURNSTILE_VERIFY_URL
        self.transport = transport
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    async def verify(self, response_token: str, remote_ip: Optional[str] = None) -> bool:
        """True only when Turnstile reports the challenge as solved."""
        if not self.secret_key:
            return False

        data = {"secret": self.secret_key, "response": response_token}
        if remote_ip:
            data["remoteip"] = remote_ip

        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.post(self.verify_url, data=data)
        except httpx.HTTPError as e:
            logger.error("turnstile_verification_error", error=str(e))
            return False

        if response.status_code != 200:
            logger.warning("turnstile_unexpected_status", status_code=response.status_code)
            return False

        try:
            result = response.json()
        except ValueError:
            logger.warning("turnstile_invalid_response")
            return False

        return isinstance(result, dict) and result.get("success") is True
