"""
In-process observation sources.

``ScriptedObservationSource`` replays a fixed queue of prices and failures,
which makes scheduler behaviour reproducible in tests and replays.
``SimulatedObservationSource`` produces a seeded random walk for demos; all
demo randomness lives here.
"""

from __future__ import annotations

import asyncio
import random
from collections import deque
from datetime import datetime
from typing import Callable, Iterable, Optional, Union

from price_intel.models.schemas import FetchErrorKind, FetchResult, Observation, utc_now
from price_intel.sources.base import ObservationSource
from price_intel.utils.logger import get_logger

logger = get_logger(__name__)

ScriptItem = Union[float, int, Observation, FetchErrorKind, BaseException]


class ScriptedObservationSource(ObservationSource):
    """
    Deterministic source backed by per-(product, competitor) queues.

    Each ``fetch`` pops the next item for the pair:
        - a number becomes an available observation at that price
        - an ``Observation`` is returned as-is
        - a ``FetchErrorKind`` becomes a failed ``FetchResult``
        - an exception instance is raised

    An empty queue yields an ``unavailable`` failure.

    Example:
        >>> source = ScriptedObservationSource({("sku-1", "acme"): [100, 90]})
        >>> (await source.fetch("sku-1", "acme")).observation.price
        100.0
    """

    def __init__(
        self,
        script: Optional[dict[tuple[str, str], Iterable[ScriptItem]]] = None,
        currency: str = "USD",
        delay: float = 0.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__()
        self.currency = currency
        self.delay = delay
        self._clock = clock
        self._script: dict[tuple[str, str], deque[ScriptItem]] = {
            key: deque(items) for key, items in (script or {}).items()
        }
        self.calls: list[tuple[str, str]] = []

    @property
    def name(self) -> str:
        return "scripted"

    def push(self, product_id: str, competitor: str, *items: ScriptItem) -> None:
        """Append items to the queue of one pair."""
        self._script.setdefault((product_id, competitor), deque()).extend(items)

    def remaining(self, product_id: str, competitor: str) -> int:
        return len(self._script.get((product_id, competitor), ()))

    async def fetch(self, product_id: str, competitor: str) -> FetchResult:
        self.calls.append((product_id, competitor))
        if self.delay:
            await asyncio.sleep(self.delay)

        queue = self._script.get((product_id, competitor))
        if not queue:
            return self._record(
                FetchResult.failure(
                    product_id, competitor, FetchErrorKind.UNAVAILABLE, "script exhausted"
                )
            )

        item = queue.popleft()
        if isinstance(item, BaseException):
            self._error_count += 1
            raise item
        if isinstance(item, FetchErrorKind):
            return self._record(FetchResult.failure(product_id, competitor, item))
        if isinstance(item, Observation):
            return self._record(FetchResult.success(item))

        observation = Observation(
            product_id=product_id,
            competitor=competitor,
            price=float(item),
            currency=self.currency,
            timestamp=self._clock(),
        )
        return self._record(FetchResult.success(observation))


class SimulatedObservationSource(ObservationSource):
    """
    Seeded random-walk source for demos.

    Every (product, competitor) pair starts near ``base_price`` and moves by a
    bounded relative step per fetch. The same seed always produces the same
    sequence for the same call order.
    """

    def __init__(
        self,
        base_prices: Optional[dict[str, float]] = None,
        default_base_price: float = 100.0,
        seed: Optional[int] = None,
        max_step: float = 0.05,
        stockout_rate: float = 0.1,
        failure_rate: float = 0.0,
        currency: str = "USD",
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__()
        self.base_prices = dict(base_prices or {})
        self.default_base_price = default_base_price
        self.max_step = max_step
        self.stockout_rate = stockout_rate
        self.failure_rate = failure_rate
        self.currency = currency
        self._clock = clock
        self._rng = random.Random(seed)
        self._current: dict[tuple[str, str], float] = {}

    @property
    def name(self) -> str:
        return "simulated"

    def _starting_price(self, product_id: str, competitor: str) -> float:
        base = self.base_prices.get(product_id, self.default_base_price)
        return base * (1 + self._rng.uniform(-0.15, 0.15))

    async def fetch(self, product_id: str, competitor: str) -> FetchResult:
        if self.failure_rate and self._rng.random() < self.failure_rate:
            logger.debug("Simulated fetch failure", product_id=product_id, competitor=competitor)
            return self._record(
                FetchResult.failure(
                    product_id, competitor, FetchErrorKind.UNAVAILABLE, "simulated outage"
                )
            )

        key = (product_id, competitor)
        if key not in self._current:
            price = self._starting_price(product_id, competitor)
        else:
            price = self._current[key] * (1 + self._rng.uniform(-self.max_step, self.max_step))
        price = max(round(price, 2), 0.01)
        self._current[key] = price

        observation = Observation(
            product_id=product_id,
            competitor=competitor,
            price=price,
            currency=self.currency,
            available=self._rng.random() >= self.stockout_rate,
            timestamp=self._clock(),
            source_confidence=round(0.85 + self._rng.random() * 0.15, 3),
        )
        return self._record(FetchResult.success(observation))


__all__ = ["ScriptedObservationSource", "SimulatedObservationSource"]
