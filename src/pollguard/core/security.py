"""
Input sanitization and threat-signature scanning.

Poll identifiers reach the vote gate straight from the client, so they are
scanned for injection-style payloads before any datastore access.
"""

import re

MAX_IDENTIFIER_LENGTH = 128

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")

THREAT_SIGNATURES: dict[str, re.Pattern[str]] = {
    "sql_injection": re.compile(
        r"(\bunion\b.+\bselect\b|\bselect\b.+\bfrom\b|\binsert\s+into\b|\bdelete\s+from\b"
        r"|\bdrop\s+(table|database)\b|\bupdate\s+\w+\s+set\b|'\s*or\s+'?\w+'?\s*=|--|/\*|;\s*\w)",
        re.IGNORECASE,
    ),
    "xss": re.compile(
        r"(<\s*script|<\s*/\s*script|javascript\s*:|\bon\w+\s*=|<\s*iframe|<\s*img|<\s*svg)",
        re.IGNORECASE,
    ),
    "path_traversal": re.compile(r"(\.\./|\.\.\\|%2e%2e)", re.IGNORECASE),
    "command_injection": re.compile(
        r"([;|&`]|\$\()\s*(rm|cat|ls|curl|wget|sh|bash|nc|python)\b",
        re.IGNORECASE,
    ),
    "null_byte": re.compile(r"(\x00|%00)"),
}


def sanitize_input(value: str) -> str:
    """Strip control characters and surrounding whitespace, bounded in length."""
    cleaned = _CONTROL_CHARS.sub("", value).strip()
    return cleaned[:MAX_IDENTIFIER_LENGTH]


def detect_threats(value: str) -> list[str]:
    """
    Return the names of every threat signature matched by the raw value.

    An empty list means the value looks benign. Empty or oversized
    identifiers are reported as ``malformed_identifier``.
    """
    threats = [name for name, pattern in THREAT_SIGNATURES.items() if pattern.search(value)]

    if not value.strip() or len(value) > MAX_IDENTIFIER_LENGTH:
        threats.append("malformed_identifier")

    return threats
