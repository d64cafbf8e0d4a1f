"""
Stage-level retry policy with exponential backoff.
"""

from dataclasses import dataclass

from tunefetch.exceptions import RateLimited, TuneFetchError


@dataclass(frozen=True)
class RetryPolicy:
    """
    How often and how long to wait before repeating a failed stage.

    Only errors marked ``retryable`` are repeated. An error class may lower
    the bound through its own ``max_retries``; a RateLimited error with a
    ``retry_after`` replaces the computed backoff.
    """

    max_retries: int = 2
    base_delay: float = 1.5
    max_delay: float = 30.0

    def allowed_retries(self, error: BaseException) -> int:
        if not isinstance(error, TuneFetchError) or not error.retryable:
            return 0
        if error.max_retries is not None:
            return min(self.max_retries, error.max_retries)
        return self.max_retries

    def delay(self, attempt: int, error: BaseException) -> float:
        """Seconds to wait before retry number ``attempt`` (1-based)."""
        if isinstance(error, RateLimited) and error.retry_after is not None:
            return min(error.retry_after, self.max_delay)
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
