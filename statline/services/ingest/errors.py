"""Exception taxonomy for source access."""
from typing import Optional


class SourceError(Exception):
    """Base class for failures talking to an external source."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class SourceUnavailableError(SourceError):
    """Transient failure: network error, timeout, 5xx or 429. Retryable."""

    def __init__(self, message: str, source: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, source)
        self.status_code = status_code


class PermanentSourceError(SourceError):
    """Failure that retrying cannot fix: 4xx (other than 408/429) or an unparseable response."""

    def __init__(self, message: str, source: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, source)
        self.status_code = status_code


class RetriesExhaustedError(SourceError):
    """The rate limiter gave up on a request after its retry budget."""

    def __init__(self, source: str, attempts: int, last_error: BaseException):
        super().__init__(
            f"{source} request failed after {attempts} attempts: {last_error}",
            source,
        )
        self.attempts = attempts
        self.last_error = last_error


class QueueClearedError(SourceError):
    """A pending request was dropped by clear_queue()."""


class RunCancelledError(Exception):
    """The ingest run was cancelled at a suspension point."""


class UnknownAdapterError(ValueError):
    """No adapter is registered under the requested name."""


def is_retryable(error: BaseException) -> bool:
    """Whether the rate limiter should spend retry budget on this error."""
    return not isinstance(error, (PermanentSourceError, RunCancelledError, QueueClearedError))
