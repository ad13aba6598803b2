"""Exception hierarchy for PollGuard."""


class PollGuardError(Exception):
    """Base class for all PollGuard errors."""


class DatastoreError(PollGuardError):
    """A repository could not read from or write to the datastore."""


class CaptchaTokenError(PollGuardError):
    """A CAPTCHA token could not be decoded or failed verification."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
