"""
Device fingerprint and client identity hashing.

Both values are derived from signals the browser reports about itself:

- The device fingerprint is a best-effort, non-cryptographic signature
  computed with the same 32-bit rolling hash browsers use client-side, so a
  fingerprint computed in the page and one computed here agree.
- The client identity hash is a privacy-preserving pseudo-identity used in
  place of a network address for rate limiting. It never includes the real
  IP and rotates according to the configured ``IdentityWindow``.
"""

import hashlib
import secrets
from datetime import date, datetime, timezone
from typing import Optional

import structlog

from pollguard.core.config import IdentityWindow, settings
from pollguard.schemas.client import ClientEnvironment

logger = structlog.get_logger(__name__)

UNKNOWN_SIGNAL = "unknown"
SIGNAL_SEPARATOR = "|"
IDENTITY_HASH_LENGTH = 16

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(value: int) -> str:
    """Encode a non-negative integer in base 36 (lowercase)."""
    if value < 0:
        raise ValueError("base36 encoding requires a non-negative integer")
    if value == 0:
        return "0"

    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def rolling_hash32(text: str) -> int:
    """
    32-bit signed rolling hash: ``hash = (hash << 5) - hash + code_unit``.

    Iterates UTF-16 code units so the result matches the browser's
    ``charCodeAt`` based implementation for any input.
    """
    value = 0
    encoded = text.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        code_unit = encoded[i] | (encoded[i + 1] << 8)
        value = ((value << 5) - value + code_unit) & 0xFFFFFFFF

    if value >= 0x80000000:
        value -= 0x100000000
    return value


def is_missing_signal(value: Optional[str]) -> bool:
    """Fingerprints and identity hashes that carry no identifying information."""
    return not value or value == UNKNOWN_SIGNAL


def generate_device_fingerprint(environment: Optional[ClientEnvironment]) -> str:
    """
    Derive a device fingerprint from browser characteristics.

    Deterministic for a given browser/device combination; not globally
    unique and not stable across browser updates. Never raises.
    """
    if environment is None:
        return UNKNOWN_SIGNAL

    components = [
        environment.user_agent,
        environment.language,
        environment.screen_resolution,
        str(environment.timezone_offset),
        environment.platform,
        environment.canvas_data or "",
    ]
    return to_base36(abs(rolling_hash32(SIGNAL_SEPARATOR.join(components))))


def calendar_date_string(day: date) -> str:
    """Format a date like the browser's ``Date.toDateString()``: ``Sat Oct 17 2026``."""
    return day.strftime("%a %b %d %Y")


def hash_client_identity(
    environment: Optional[ClientEnvironment],
    window: Optional[IdentityWindow] = None,
    today: Optional[date] = None,
    session_id: Optional[str] = None,
) -> str:
    """
    Compute the privacy-preserving client identity hash (16 hex chars).

    With the default daily window the calendar date is part of the hashed
    payload, so the identity rotates at midnight UTC. If the SHA-256 digest
    is unavailable a random ``browser_`` token is returned instead, which
    makes every request look like a new client to the rate limiter.
    """
    if environment is None:
        return UNKNOWN_SIGNAL

    window = window or settings.FRAUD_IDENTITY_WINDOW
    components = [
        environment.user_agent,
        environment.language,
        environment.screen_resolution,
    ]

    if window == IdentityWindow.DAY:
        components.append(calendar_date_string(today or datetime.now(timezone.utc).date()))
    elif window == IdentityWindow.SESSION:
        components.append(session_id or "")

    payload = SIGNAL_SEPARATOR.join(components).encode("utf-8")

    try:
        digest = hashlib.sha256(payload).hexdigest()
    except ValueError as e:
        logger.warning("identity_digest_unavailable", error=str(e))
        return f"browser_{secrets.token_hex(8)}"

    return digest[:IDENTITY_HASH_LENGTH]
