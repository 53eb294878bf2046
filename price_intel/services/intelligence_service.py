"""
Boundary facade for the price intelligence engine.

``PriceIntelligenceService`` wires an ObservationSource, a repository, the
tracking scheduler and the intelligence pipeline together and exposes the
four boundary operations:

    - start_tracking(product_id, competitors, interval_minutes) -> job id
    - stop_tracking(job_id)
    - get_current_intelligence(product_id) -> IntelligenceReport
    - get_portfolio_summary(product_ids) -> PortfolioSummary

Example:
    >>> async with PriceIntelligenceService(SimulatedObservationSource(seed=7)) as service:
    ...     await service.register_product(Product(id="sku-1", cost=50, current_price=100))
    ...     job_id = await service.start_tracking("sku-1", ["acme", "globex"])
    ...     report = await service.get_current_intelligence("sku-1")
"""

from __future__ import annotations

import asyncio
import inspect
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Iterable, Optional, Union

from price_intel.analyzers.change_detector import ChangeDetector
from price_intel.analyzers.market_intelligence import MarketIntelligenceAnalyzer
from price_intel.config.settings import Settings, get_settings
from price_intel.models.schemas import (
    IntelligenceReport,
    MarketTrend,
    Observation,
    PortfolioSummary,
    PriceAlert,
    Product,
    TrackingJob,
    TrackingStats,
    utc_now,
)
from price_intel.pipeline.orchestrator import IntelligencePipeline
from price_intel.scheduler.tracking import TickOutcome, TrackingScheduler
from price_intel.services.portfolio import PortfolioAggregator
from price_intel.services.pricing_engine import PricingRecommendationEngine
from price_intel.sources.base import ObservationSource
from price_intel.storage.repository import InMemoryRepository, IntelligenceRepository
from price_intel.utils.logger import get_logger
from price_intel.utils.retry import ErrorHandler, ProductNotFoundError

logger = get_logger(__name__)

AlertListener = Callable[[PriceAlert], Union[None, Awaitable[None]]]


class PriceIntelligenceService:
    """
    Explicit engine object; nothing is kept in module-level registries.

    Use as an async context manager (or call ``close()``) to stop every
    tracking job and release the source.
    """

    def __init__(
        self,
        source: ObservationSource,
        repository: Optional[IntelligenceRepository] = None,
        settings: Optional[Settings] = None,
        detector: Optional[ChangeDetector] = None,
        analyzer: Optional[MarketIntelligenceAnalyzer] = None,
        engine: Optional[PricingRecommendationEngine] = None,
        aggregator: Optional[PortfolioAggregator] = None,
    ):
        self.settings = settings or get_settings()
        self.source = source
        self.repository = repository or InMemoryRepository()
        self.detector = detector or ChangeDetector()
        self.analyzer = analyzer or MarketIntelligenceAnalyzer(self.settings)
        self.engine = engine or PricingRecommendationEngine(self.settings)
        self.aggregator = aggregator or PortfolioAggregator(self.settings)

        self.scheduler = TrackingScheduler(
            source,
            settings=self.settings,
            on_tick=self.handle_tick,
            repository=self.repository,
        )
        self.pipeline = IntelligencePipeline(
            self.repository,
            settings=self.settings,
            detector=self.detector,
            analyzer=self.analyzer,
            engine=self.engine,
        )

        self._alert_listeners: list[AlertListener] = []
        self._latest_trends: dict[str, list[MarketTrend]] = {}
        self._analysis_semaphore = asyncio.Semaphore(self.settings.max_concurrent_analyses)

    async def __aenter__(self) -> "PriceIntelligenceService":
        await self.source.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.scheduler.shutdown()
        await self.source.disconnect()

    # =========================================================================
    # Catalog & ingestion
    # =========================================================================

    async def register_product(self, product: Product) -> None:
        await self.repository.upsert_product(product)

    async def record_observations(self, observations: Iterable[Observation]) -> int:
        """Store externally collected observations (imports, replays)."""
        count = 0
        for observation in observations:
            await self.repository.append_observation(observation)
            count += 1
        return count

    def add_alert_listener(self, listener: AlertListener) -> None:
        """Register a callback (sync or async) for live alerts."""
        self._alert_listeners.append(listener)

    # =========================================================================
    # Boundary operations
    # =========================================================================

    async def start_tracking(
        self,
        product_id: str,
        competitors: Iterable[str],
        interval_minutes: Optional[float] = None,
    ) -> str:
        """
        Start recurring sampling of ``competitors`` for a registered product.

        Raises:
            ProductNotFoundError: The product was never registered.
            DuplicateJobError: The product already has an active job.
            InvalidInputError: Empty competitor set or non-positive interval.
        """
        if await self.repository.get_product(product_id) is None:
            raise ProductNotFoundError(product_id)

        competitors = list(competitors)
        history = []
        for competitor in competitors:
            latest = await self.repository.latest_observation(product_id, competitor)
            if latest is not None:
                history.append(latest)
        await self.scheduler.prime(history)

        return await self.scheduler.start(product_id, competitors, interval_minutes)

    async def stop_tracking(self, job_id: str) -> TrackingJob:
        """
        Raises:
            JobNotFoundError: Unknown or already stopped job.
        """
        return await self.scheduler.stop(job_id)

    async def get_current_intelligence(
        self, product_id: str, as_of: Optional[datetime] = None
    ) -> IntelligenceReport:
        """
        Regenerate alerts, trends, position and recommendation for a product.

        A product with no observations yields a low-confidence report whose
        ``data_status`` tells "no data yet" apart from "tracking failed".
        """
        job = await self.scheduler.job_for_product(product_id)
        async with self._analysis_semaphore:
            return await self.pipeline.run(product_id, as_of=as_of, job=job)

    async def get_portfolio_summary(
        self,
        product_ids: Optional[Iterable[str]] = None,
        top_n: Optional[int] = None,
        as_of: Optional[datetime] = None,
    ) -> PortfolioSummary:
        """Aggregate recommendations for ``product_ids`` (default: whole catalog)."""
        if product_ids is None:
            product_ids = [p.id for p in await self.repository.list_products()]
        product_ids = list(dict.fromkeys(product_ids))

        reports = await asyncio.gather(
            *(self.get_current_intelligence(pid, as_of=as_of) for pid in product_ids)
        )
        return self.aggregator.aggregate([r.recommendation for r in reports], top_n=top_n)

    # =========================================================================
    # Tick handling
    # =========================================================================

    async def handle_tick(self, outcome: TickOutcome) -> None:
        """
        Persist a tick's observations and alerts, refresh trends, then notify
        alert listeners. A failing listener does not affect stored state.
        """
        product_id = outcome.job.product_id

        for observation in outcome.observations:
            await self.repository.append_observation(observation)

        alerts = []
        for observation in outcome.observations:
            alert = self.detector.detect(observation, outcome.priors.get(observation.competitor))
            if alert is None:
                continue
            await self.repository.append_alert(alert)
            logger.info(
                "Price alert",
                product_id=product_id,
                competitor=alert.competitor,
                severity=alert.severity,
                change_percent=round(alert.change_percent, 2),
            )
            alerts.append(alert)

        window = timedelta(hours=self.settings.observation_window_hours)
        as_of = max(o.timestamp for o in outcome.observations)
        history = await self.repository.list_observations(product_id, since=as_of - window)
        product = await self.repository.get_product(product_id)
        analysis = self.analyzer.analyze(
            history,
            window=window,
            current_price=product.current_price if product else None,
            as_of=as_of,
            product_id=product_id,
        )
        self._latest_trends[product_id] = analysis.trends

        for alert in alerts:
            await self._notify(alert)

    async def _notify(self, alert: PriceAlert) -> None:
        for listener in self._alert_listeners:
            try:
                result = listener(alert)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "Alert listener failed",
                    alert_id=alert.id,
                    product_id=alert.product_id,
                    error=str(e),
                    category=ErrorHandler.categorize_error(e),
                )

    # =========================================================================
    # Status & maintenance
    # =========================================================================

    def latest_trends(self, product_id: str) -> list[MarketTrend]:
        """Trends computed after the most recent tick for a product."""
        return list(self._latest_trends.get(product_id, []))

    async def list_alerts(
        self, product_id: str, since: Optional[datetime] = None
    ) -> list[PriceAlert]:
        return await self.repository.list_alerts(product_id, since=since)

    async def tracking_stats(self) -> TrackingStats:
        return await self.scheduler.stats()

    async def prune(self, now: Optional[datetime] = None) -> int:
        """Delete observations older than RETENTION_DAYS."""
        cutoff = (now or utc_now()) - timedelta(days=self.settings.retention_days)
        return await self.repository.prune_observations(cutoff)


__all__ = ["PriceIntelligenceService", "AlertListener"]
