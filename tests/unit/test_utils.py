import pytest
import asyncio
import structlog
from unittest.mock import AsyncMock, MagicMock
from price_intel.utils.logger import LogContext, configure_from_settings, get_logger, setup_logging
from price_intel.utils.retry import (
    DuplicateJobError,
    ErrorHandler,
    InvalidInputError,
    JobNotFoundError,
    SourceTimeoutError,
    SourceUnavailableError,
    async_retry,
)


# =============================================================================
# Logging
# =============================================================================

def test_setup_logging():
    # Calling it shouldn't crash
    setup_logging(level="DEBUG", json_format=False)
    setup_logging(level="INFO", json_format=True)
    setup_logging(level="WARNING", json_format=False, use_stdlib=True)


def test_configure_from_settings(settings):
    configure_from_settings(settings)


def test_get_logger():
    logger = get_logger("test_module")
    assert logger is not None
    logger.info("test message", key="value")


def test_log_context_binds_and_unbinds():
    with LogContext(job_id="job-123", product_id="sku-1"):
        assert structlog.contextvars.get_contextvars()["job_id"] == "job-123"
    assert "job_id" not in structlog.contextvars.get_contextvars()


# =============================================================================
# Retry
# =============================================================================

@pytest.mark.asyncio
async def test_async_retry_success():
    mock_func = AsyncMock(return_value="success")

    result = await async_retry(max_attempts=3)(mock_func)()

    assert result == "success"
    assert mock_func.call_count == 1


@pytest.mark.asyncio
async def test_async_retry_fail_then_success():
    mock_func = AsyncMock(side_effect=[SourceUnavailableError("down"), "success"])
    on_retry = MagicMock()

    result = await async_retry(max_attempts=3, initial_wait=0, on_retry=on_retry)(mock_func)()

    assert result == "success"
    assert mock_func.call_count == 2
    on_retry.assert_called_once()


@pytest.mark.asyncio
async def test_async_retry_exhausted():
    mock_func = AsyncMock(side_effect=SourceTimeoutError("Permanent Fail"))

    with pytest.raises(SourceTimeoutError, match="Permanent Fail"):
        await async_retry(max_attempts=2, initial_wait=0)(mock_func)()

    assert mock_func.call_count == 2


@pytest.mark.asyncio
async def test_async_retry_ignores_other_exceptions():
    mock_func = AsyncMock(side_effect=KeyError("nope"))

    with pytest.raises(KeyError):
        await async_retry(max_attempts=3, initial_wait=0, exceptions=(SourceUnavailableError,))(mock_func)()

    assert mock_func.call_count == 1


@pytest.mark.parametrize("error,category", [
    (SourceTimeoutError("slow"), "SOURCE_TIMEOUT"),
    (asyncio.TimeoutError(), "SOURCE_TIMEOUT"),
    (SourceUnavailableError("down"), "SOURCE_UNAVAILABLE"),
    (DuplicateJobError("sku-1", "job-1"), "DUPLICATE_JOB"),
    (JobNotFoundError("job-1"), "NOT_FOUND"),
    (InvalidInputError("bad"), "INVALID_INPUT"),
    (ConnectionError("reset"), "SOURCE_UNAVAILABLE"),
    (RuntimeError("connection dropped"), "SOURCE_UNAVAILABLE"),
    (RuntimeError("boom"), "UNKNOWN_ERROR"),
])
def test_categorize_error(error, category):
    assert ErrorHandler.categorize_error(error) == category


def test_is_recoverable():
    assert ErrorHandler.is_recoverable(SourceUnavailableError("down"))
    assert not ErrorHandler.is_recoverable(DuplicateJobError("sku-1", "job-1"))


def test_duplicate_job_error_carries_ids():
    error = DuplicateJobError("sku-1", "job-1")
    assert error.product_id == "sku-1"
    assert error.existing_job_id == "job-1"
    assert "sku-1" in str(error)
