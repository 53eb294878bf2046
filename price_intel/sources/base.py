"""
Observation source contract.

A source answers one question: what does ``competitor`` charge for
``product_id`` right now? Failures are reported as ``FetchResult`` values of
kind ``unavailable`` or ``timeout``. Sources may also raise ``SourceError``;
the scheduler treats both forms the same way.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from price_intel.models.schemas import FetchResult


class ObservationSource(ABC):
    """
    Abstract base class for competitor price sources.

    Implementations must be safe to call concurrently for different
    (product, competitor) pairs.
    """

    def __init__(self) -> None:
        self._request_count = 0
        self._error_count = 0

    @property
    @abstractmethod
    def name(self) -> str:
        """Source name identifier."""
        pass

    @abstractmethod
    async def fetch(self, product_id: str, competitor: str) -> FetchResult:
        """Fetch the current price of ``product_id`` at ``competitor``."""
        pass

    async def connect(self) -> None:
        """Acquire any client resources. No-op by default."""

    async def disconnect(self) -> None:
        """Release client resources. No-op by default."""

    async def __aenter__(self) -> "ObservationSource":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    def _record(self, result: FetchResult) -> FetchResult:
        self._request_count += 1
        if not result.ok:
            self._error_count += 1
        return result

    def get_stats(self) -> dict[str, Any]:
        """Get source statistics."""
        return {
            "name": self.name,
            "request_count": self._request_count,
            "error_count": self._error_count,
        }


__all__ = ["ObservationSource"]
