"""PollGuard - vote-integrity gate for civic polls."""

__version__ = "1.0.0"
