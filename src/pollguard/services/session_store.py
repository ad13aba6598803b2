"""
Per-browser-session identifiers.

A session id is created on first use and then reused for the lifetime of
the browser session; it is never regenerated per call.
"""

import re
import secrets
import time
from typing import Optional, Protocol, runtime_checkable

from fastapi import Request, Response

from pollguard.core.config import settings

SESSION_ID_PATTERN = re.compile(r"^session_\d{10,16}_[0-9a-f]{12}$")


def new_session_id() -> str:
    """Create a random session id with its creation time in epoch milliseconds."""
    return f"session_{int(time.time() * 1000)}_{secrets.token_hex(6)}"


@runtime_checkable
class SessionIdStore(Protocol):
    """Read-or-create access to the current browser session's id."""

    def get_or_create(self) -> str: ...


class InMemorySessionIdStore:
    """One cached session id per store instance (one instance per browser session)."""

    def __init__(self, session_id: Optional[str] = None):
        self._session_id = session_id

    def get_or_create(self) -> str:
        if self._session_id is None:
            self._session_id = new_session_id()
        return self._session_id


class CookieSessionIdStore:
    """
    Session id carried in a session cookie.

    Reads the id from the request cookie; when absent or malformed a new id
    is created and set on the response once.
    """

    def __init__(
        self,
        request: Request,
        response: Response,
        cookie_name: Optional[str] = None,
    ):
        self.request = request
        self.response = response
        self.cookie_name = cookie_name or settings.SESSION_COOKIE_NAME
        self._session_id: Optional[str] = None

    def get_or_create(self) -> str:
        if self._session_id is not None:
            return self._session_id

        existing = self.request.cookies.get(self.cookie_name)
        if existing and SESSION_ID_PATTERN.match(existing):
            self._session_id = existing
            return existing

        self._session_id = new_session_id()
        self.response.set_cookie(
            self.cookie_name,
            self._session_id,
            httponly=True,
            samesite="lax",
            secure=settings.APP_ENV == "production",
        )
        return self._session_id
