"""Utils module for the price intelligence engine."""

from price_intel.utils.logger import LogContext, get_logger, setup_logging
from price_intel.utils.retry import (
    async_retry,
    ErrorHandler,
    PriceIntelError,
    SourceError,
    SourceUnavailableError,
    SourceTimeoutError,
    DuplicateJobError,
    JobNotFoundError,
    ProductNotFoundError,
    InvalidInputError,
    PipelineError,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "LogContext",
    "async_retry",
    "ErrorHandler",
    "PriceIntelError",
    "SourceError",
    "SourceUnavailableError",
    "SourceTimeoutError",
    "DuplicateJobError",
    "JobNotFoundError",
    "ProductNotFoundError",
    "InvalidInputError",
    "PipelineError",
]
