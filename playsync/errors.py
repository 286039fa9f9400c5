class SyncError(Exception):
    """Base class for errors raised by playsync."""


class InvalidRequestError(SyncError):
    """A request payload is missing a required identifier.

    Raised before any network activity. Never retried and never queued.
    """
