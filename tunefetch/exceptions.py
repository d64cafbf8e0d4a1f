"""
Defines custom exceptions for the application to allow for more specific error handling.

Every error carries two class-level hints used by the stage retry policy:
``retryable`` tells whether another attempt of the same stage can succeed,
and ``max_retries`` optionally caps the number of extra attempts below the
policy default.
"""

from typing import Optional


class TuneFetchError(Exception):
    """Base exception for all application-specific errors."""

    retryable: bool = False
    max_retries: Optional[int] = None


class SourceUnavailable(TuneFetchError):
    """Raised when a source platform or the network is temporarily down."""

    retryable = True


class RateLimited(TuneFetchError):
    """Raised when a provider rejects a request with a rate-limit response."""

    retryable = True

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class NotFound(TuneFetchError):
    """Raised when the requested content was removed or the ID is invalid."""


class UnsupportedSource(TuneFetchError):
    """Raised when no source strategy can handle a request."""


class UnsupportedConversion(TuneFetchError):
    """Raised when there is no known conversion path between two codecs."""


class TranscodeFailure(TuneFetchError):
    """Raised when the transcoder process fails. Retried exactly once."""

    retryable = True
    max_retries = 1


class WriteFailure(TuneFetchError):
    """Raised when the final output file cannot be written or committed."""


class UnsupportedTagFormat(TuneFetchError):
    """Raised when a container cannot hold one of the requested tag fields."""


class ProviderError(TuneFetchError):
    """Raised by an auxiliary metadata provider when a lookup fails."""


class InvalidSegmentSpec(TuneFetchError):
    """Raised when a skip range lies outside the media's fetched duration."""


class ProcessFailure(TuneFetchError):
    """Raised when an external audio process exits with an error."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class ProcessTimeout(TuneFetchError):
    """Raised when an external audio process exceeds its time budget."""


class ExpansionError(TuneFetchError):
    """Raised when a playlist or CSV input cannot be turned into track requests."""


class ConfigurationError(TuneFetchError):
    """Raised for issues related to configuration loading or validation."""


class InvalidTransition(TuneFetchError):
    """Raised when a job is asked to move backwards or out of a terminal state."""
