"""Exception hierarchy shared by the sync engine, storage and HTTP layers."""


class ThymerInboxError(Exception):
    """Base class for all errors raised by this package."""


class StorageError(ThymerInboxError):
    """Raised when a snapshot or metadata read/write fails."""


class FetchError(ThymerInboxError):
    """Raised when an adapter cannot return a complete result for a scope."""

    def __init__(self, message: str, source: str = "", scope: str | None = None):
        super().__init__(message)
        self.source = source
        self.scope = scope


class TransientHTTPError(FetchError):
    """Upstream 5xx or transport failure that is worth retrying."""


class RateLimitedError(FetchError):
    """Upstream asked us to back off.

    ``retry_after`` is the provider-specified delay in seconds, or None when
    the response did not say how long to wait.
    """

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        source: str = "",
        scope: str | None = None,
    ):
        super().__init__(message, source=source, scope=scope)
        self.retry_after = retry_after


class UnknownSourceError(ThymerInboxError):
    """Raised when a sync is requested for a source that is not registered."""
