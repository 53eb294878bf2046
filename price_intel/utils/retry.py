"""
Error taxonomy and retry utilities.

Per-competitor fetch failures are recovered locally (logged, retried, then
skipped) and never abort a scheduler tick. Invariant violations such as a
duplicate tracking job are raised to the caller as rejected operations.
"""

import asyncio
import logging
from functools import wraps
from typing import Callable, Optional, Type

logger = logging.getLogger(__name__)

# =============================================================================
# Custom Exceptions
# =============================================================================

class PriceIntelError(Exception):
    """Base application exception."""
    pass


class SourceError(PriceIntelError):
    """A single competitor fetch failed."""

    def __init__(self, message: str, product_id: str = "", competitor: str = ""):
        super().__init__(message)
        self.product_id = product_id
        self.competitor = competitor


class SourceUnavailableError(SourceError):
    pass


class SourceTimeoutError(SourceError):
    pass


class DuplicateJobError(PriceIntelError):
    """Start requested for a product that already has an active job."""

    def __init__(self, product_id: str, existing_job_id: str):
        super().__init__(
            f"Product '{product_id}' already has an active tracking job ({existing_job_id})"
        )
        self.product_id = product_id
        self.existing_job_id = existing_job_id


class JobNotFoundError(PriceIntelError):

    def __init__(self, job_id: str):
        super().__init__(f"Tracking job '{job_id}' not found or already stopped")
        self.job_id = job_id


class ProductNotFoundError(PriceIntelError):

    def __init__(self, product_id: str):
        super().__init__(f"Product '{product_id}' not found")
        self.product_id = product_id


class InvalidInputError(PriceIntelError, ValueError):
    pass


class PipelineError(PriceIntelError):
    """Intelligence pipeline failed and could not produce a report."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# =============================================================================
# Retry Decorator
# =============================================================================

def async_retry(
    max_attempts: int = 3,
    backoff_factor: float = 2.0,
    initial_wait: float = 1.0,
    exceptions: tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[int, Exception], None]] = None
):
    """
    Retry decorator with exponential backoff.

    Waits ``initial_wait * backoff_factor ** (attempt - 1)`` seconds between
    attempts and re-raises the last exception once attempts are exhausted.
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            last_exception = None

            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e

                    if attempt == max_attempts:
                        logger.warning(f"Final attempt {attempt} failed for {func.__name__}: {e}")
                        break

                    sleep_time = initial_wait * (backoff_factor ** (attempt - 1))

                    if on_retry:
                        on_retry(attempt, e)

                    logger.debug(
                        f"Attempt {attempt} failed for {func.__name__}: {e}. "
                        f"Retrying in {sleep_time:.2f}s..."
                    )

                    await asyncio.sleep(sleep_time)

            if last_exception:
                raise last_exception
        return wrapper
    return decorator


# =============================================================================
# Error Handler
# =============================================================================

class ErrorHandler:
    """Centralized error categorization for logging and boundary responses."""

    @staticmethod
    def categorize_error(error: Exception) -> str:
        """Categorize errors for appropriate handling."""
        if isinstance(error, (SourceTimeoutError, asyncio.TimeoutError)):
            return "SOURCE_TIMEOUT"
        if isinstance(error, SourceError):
            return "SOURCE_UNAVAILABLE"
        if isinstance(error, DuplicateJobError):
            return "DUPLICATE_JOB"
        if isinstance(error, (JobNotFoundError, ProductNotFoundError)):
            return "NOT_FOUND"
        if isinstance(error, (InvalidInputError, ValueError, TypeError)):
            return "INVALID_INPUT"
        if isinstance(error, (ConnectionError, OSError)):
            return "SOURCE_UNAVAILABLE"

        err_str = str(error).lower()
        if "timeout" in err_str or "timed out" in err_str:
            return "SOURCE_TIMEOUT"
        if "connection" in err_str:
            return "SOURCE_UNAVAILABLE"

        return "UNKNOWN_ERROR"

    @staticmethod
    def is_recoverable(error: Exception) -> bool:
        """Source failures are recovered inside a tick; everything else propagates."""
        return ErrorHandler.categorize_error(error) in ("SOURCE_TIMEOUT", "SOURCE_UNAVAILABLE")
