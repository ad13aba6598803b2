"""Database module."""

from pollguard.db.session import close_db, init_db, session_scope

__all__ = ["init_db", "close_db", "session_scope"]
