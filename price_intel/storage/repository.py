"""
Persistence contract for products, observations, alerts and tracking jobs.

The engine only needs keyed reads, appends and updates plus retention
pruning, so the storage technology is left to implementations of
``IntelligenceRepository``. ``InMemoryRepository`` is the shipped one.
"""

from __future__ import annotations

import asyncio
import bisect
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime
from typing import Optional

from price_intel.models.schemas import (
    Observation,
    PriceAlert,
    Product,
    TrackingJob,
    ensure_utc,
)
from price_intel.utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# Repository Interface
# =============================================================================

class IntelligenceRepository(ABC):
    """Abstract interface for intelligence persistence."""

    # Products
    @abstractmethod
    async def upsert_product(self, product: Product) -> None:
        """Insert or replace a catalog product."""

    @abstractmethod
    async def get_product(self, product_id: str) -> Optional[Product]:
        """Load a product by id."""

    @abstractmethod
    async def list_products(self) -> list[Product]:
        """List every stored product."""

    # Observations
    @abstractmethod
    async def append_observation(self, observation: Observation) -> None:
        """Append an observation, keeping per-(product, competitor) time order."""

    @abstractmethod
    async def list_observations(
        self,
        product_id: str,
        competitor: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> list[Observation]:
        """List observations for a product, oldest first."""

    @abstractmethod
    async def latest_observation(self, product_id: str, competitor: str) -> Optional[Observation]:
        """Most recent observation for one (product, competitor) pair."""

    @abstractmethod
    async def prune_observations(self, before: datetime) -> int:
        """Delete observations older than ``before``. Returns the number removed."""

    # Alerts
    @abstractmethod
    async def append_alert(self, alert: PriceAlert) -> None:
        """Append an alert."""

    @abstractmethod
    async def list_alerts(
        self, product_id: str, since: Optional[datetime] = None
    ) -> list[PriceAlert]:
        """List alerts for a product, oldest first."""

    # Jobs
    @abstractmethod
    async def save_job(self, job: TrackingJob) -> None:
        """Insert or update a tracking job snapshot."""

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[TrackingJob]:
        """Load a job by id."""

    @abstractmethod
    async def list_jobs(self, product_id: Optional[str] = None) -> list[TrackingJob]:
        """List jobs, optionally for one product."""


# =============================================================================
# In-Memory Implementation
# =============================================================================

class InMemoryRepository(IntelligenceRepository):
    """
    In-memory repository for tests, demos and single-process deployments.

    Each instance owns its state; nothing is shared at module level.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._products: dict[str, Product] = {}
        self._observations: dict[tuple[str, str], list[Observation]] = defaultdict(list)
        self._alerts: dict[str, list[PriceAlert]] = defaultdict(list)
        self._jobs: dict[str, TrackingJob] = {}

    async def upsert_product(self, product: Product) -> None:
        async with self._lock:
            self._products[product.id] = product

    async def get_product(self, product_id: str) -> Optional[Product]:
        async with self._lock:
            return self._products.get(product_id)

    async def list_products(self) -> list[Product]:
        async with self._lock:
            return list(self._products.values())

    async def append_observation(self, observation: Observation) -> None:
        async with self._lock:
            series = self._observations[(observation.product_id, observation.competitor)]
            # Late arrivals are inserted in place so each series stays time-ordered.
            index = bisect.bisect_right([o.timestamp for o in series], observation.timestamp)
            series.insert(index, observation)

    async def list_observations(
        self,
        product_id: str,
        competitor: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> list[Observation]:
        async with self._lock:
            if competitor is not None:
                observations = list(self._observations.get((product_id, competitor), []))
            else:
                observations = [
                    o
                    for (pid, _), series in self._observations.items()
                    if pid == product_id
                    for o in series
                ]
        if since is not None:
            since = ensure_utc(since)
            observations = [o for o in observations if o.timestamp >= since]
        return sorted(observations, key=lambda o: o.timestamp)

    async def latest_observation(self, product_id: str, competitor: str) -> Optional[Observation]:
        async with self._lock:
            series = self._observations.get((product_id, competitor))
            return series[-1] if series else None

    async def prune_observations(self, before: datetime) -> int:
        before = ensure_utc(before)
        removed = 0
        async with self._lock:
            for key, series in list(self._observations.items()):
                kept = [o for o in series if o.timestamp >= before]
                removed += len(series) - len(kept)
                if kept:
                    self._observations[key] = kept
                else:
                    del self._observations[key]
        if removed:
            logger.info("Pruned observations", removed=removed, before=before.isoformat())
        return removed

    async def append_alert(self, alert: PriceAlert) -> None:
        async with self._lock:
            self._alerts[alert.product_id].append(alert)

    async def list_alerts(
        self, product_id: str, since: Optional[datetime] = None
    ) -> list[PriceAlert]:
        async with self._lock:
            alerts = list(self._alerts.get(product_id, []))
        if since is not None:
            since = ensure_utc(since)
            alerts = [a for a in alerts if a.timestamp >= since]
        return sorted(alerts, key=lambda a: a.timestamp)

    async def save_job(self, job: TrackingJob) -> None:
        async with self._lock:
            self._jobs[job.id] = job.model_copy(deep=True)

    async def get_job(self, job_id: str) -> Optional[TrackingJob]:
        async with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    async def list_jobs(self, product_id: Optional[str] = None) -> list[TrackingJob]:
        async with self._lock:
            return [
                job.model_copy(deep=True)
                for job in self._jobs.values()
                if product_id is None or job.product_id == product_id
            ]


__all__ = ["IntelligenceRepository", "InMemoryRepository"]
