"""
Market intelligence analysis over a window of competitor observations.

Produces:
    1. Price-level trend - least-squares slope per competitor, normalized by
       that competitor's mean price, combined as a sample-weighted mean
    2. Demand-proxy trend - the same fit on the stock-out indicator, only
       when availability actually varies
    3. Competitive position - empirical percentile of the merchant price
       among the latest competitor prices
    4. Insights - dispersion, premium and leadership signals
    5. Predictions - per-competitor linear extrapolation

All computations are synchronous and side-effect free.
"""

from __future__ import annotations

import statistics
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from price_intel.config.settings import Settings, get_settings
from price_intel.models.schemas import (
    CompetitivePosition,
    ConfidenceLevel,
    InsightType,
    MarketAnalysis,
    MarketInsight,
    MarketTrend,
    Observation,
    PositionCategory,
    PricePrediction,
    Severity,
    TrendDirection,
    TrendType,
    ensure_utc,
    utc_now,
)
from price_intel.utils.logger import get_logger

logger = get_logger(__name__)

SECONDS_PER_DAY = 86400.0

HIGH_CONFIDENCE_THRESHOLD = 0.7
MEDIUM_CONFIDENCE_THRESHOLD = 0.4

DISPERSION_INSIGHT_PERCENT = 30.0
PREMIUM_INSIGHT_PERCENTILE = 80.0
LEADER_INSIGHT_PERCENTILE = 20.0
OVERPRICED_RATIO = 1.1
UNDERPRICED_RATIO = 0.9

MIN_PREDICTION_POINTS = 3


@dataclass
class _SeriesFit:
    competitor: str
    samples: int
    slope: float


def confidence_score(samples: int, min_samples: int) -> float:
    """Sample-count based confidence in [0, 1]."""
    if samples <= 0:
        return 0.0
    if samples < min_samples:
        return min(0.3, 0.3 * samples / min_samples)
    return 0.5 + 0.5 * min(1.0, (samples - min_samples) / min_samples)


def confidence_level(score: float) -> ConfidenceLevel:
    if score >= HIGH_CONFIDENCE_THRESHOLD:
        return ConfidenceLevel.HIGH
    if score >= MEDIUM_CONFIDENCE_THRESHOLD:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def latest_per_competitor(observations: Iterable[Observation]) -> dict[str, Observation]:
    """Newest observation for each competitor."""
    latest: dict[str, Observation] = {}
    for observation in observations:
        current = latest.get(observation.competitor)
        if current is None or observation.timestamp >= current.timestamp:
            latest[observation.competitor] = observation
    return latest


def percentile_rank(value: float, population: list[float]) -> float:
    """Empirical percentile rank, counting ties as half below."""
    below = sum(1 for p in population if p < value)
    equal = sum(1 for p in population if p == value)
    return (below + 0.5 * equal) / len(population) * 100


class MarketIntelligenceAnalyzer:
    """
    Turns observation history into trends, position and insights.

    Example:
        >>> analyzer = MarketIntelligenceAnalyzer(settings)
        >>> analysis = analyzer.analyze(observations, current_price=99.0)
        >>> analysis.price_trend.direction
        'down'
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    # =========================================================================
    # Public API
    # =========================================================================

    def analyze(
        self,
        observations: Iterable[Observation],
        window: Optional[timedelta] = None,
        current_price: Optional[float] = None,
        as_of: Optional[datetime] = None,
        product_id: Optional[str] = None,
    ) -> MarketAnalysis:
        """
        Analyze the observations that fall inside ``[as_of - window, as_of]``.

        Args:
            observations: Observations for one product, any order.
            window: Look-back window; defaults to OBSERVATION_WINDOW_HOURS.
            current_price: Merchant price, required for position and insights.
            as_of: End of the window; defaults to the newest observation.
            product_id: Used when there are no observations to infer it from.
        """
        observations = list(observations)
        window = window or timedelta(hours=self.settings.observation_window_hours)
        if product_id is None:
            product_id = observations[0].product_id if observations else ""

        if as_of is None:
            as_of = max((o.timestamp for o in observations), default=utc_now())
        as_of = ensure_utc(as_of)
        window_start = as_of - window

        in_window = sorted(
            (o for o in observations if window_start <= o.timestamp <= as_of),
            key=lambda o: o.timestamp,
        )

        trends = [self._price_trend(product_id, in_window)]
        demand = self._demand_trend(product_id, in_window)
        if demand is not None:
            trends.append(demand)

        position = None
        insights: list[MarketInsight] = []
        if current_price is not None and in_window:
            position = self.position(current_price, in_window)
            insights = self._insights(current_price, position, trends[0])

        predictions = self.predict_prices(in_window, as_of=as_of) if in_window else []

        logger.debug(
            "Market analysis completed",
            product_id=product_id,
            observations=len(in_window),
            direction=trends[0].direction,
            position=position.category if position else None,
        )

        return MarketAnalysis(
            product_id=product_id,
            trends=trends,
            position=position,
            insights=insights,
            predictions=predictions,
            observation_count=len(in_window),
            window_start=window_start,
            window_end=as_of,
        )

    def position(
        self, current_price: float, observations: Iterable[Observation]
    ) -> Optional[CompetitivePosition]:
        """Merchant price position among the latest price of each competitor."""
        latest = latest_per_competitor(observations)
        if not latest:
            return None

        prices = [o.price for o in latest.values()]
        percentile = percentile_rank(current_price, prices)

        if percentile < self.settings.below_market_percentile:
            category = PositionCategory.BELOW_MARKET
        elif percentile < self.settings.above_market_percentile:
            category = PositionCategory.AT_MARKET
        else:
            category = PositionCategory.ABOVE_MARKET

        average = statistics.fmean(prices)
        return CompetitivePosition(
            current_price=current_price,
            percentile=percentile,
            category=category,
            competitor_count=len(prices),
            lowest_price=min(prices),
            highest_price=max(prices),
            average_price=average,
            price_dispersion_percent=(max(prices) - min(prices)) / average * 100,
        )

    def predict_prices(
        self,
        observations: Iterable[Observation],
        horizon: timedelta = timedelta(days=7),
        as_of: Optional[datetime] = None,
    ) -> list[PricePrediction]:
        """
        Extrapolate each competitor's price linearly over ``horizon``.

        Competitors with fewer than three observations are skipped. Confidence
        is lower for trending series and decays for longer horizons.
        """
        by_competitor = self._group(observations)
        horizon_days = horizon.total_seconds() / SECONDS_PER_DAY
        predictions: list[PricePrediction] = []

        for competitor, series in by_competitor.items():
            if len(series) < MIN_PREDICTION_POINTS:
                continue
            slope = self._fit_slope(series, [o.price for o in series])
            if slope is None:
                continue

            last = series[-1]
            elapsed_days = 0.0
            if as_of is not None:
                elapsed_days = max(0.0, (ensure_utc(as_of) - last.timestamp).total_seconds()) / SECONDS_PER_DAY
            predicted = max(0.01, last.price + slope * (elapsed_days + horizon_days))
            relative_move = (predicted - last.price) / last.price

            if abs(relative_move) < 0.01:
                direction, confidence = TrendDirection.STABLE, 0.8
            else:
                direction = TrendDirection.UP if relative_move > 0 else TrendDirection.DOWN
                confidence = 0.7
            if horizon_days > 7:
                confidence *= 0.8
            if horizon_days > 30:
                confidence *= 0.8

            predictions.append(
                PricePrediction(
                    competitor=competitor,
                    current_price=last.price,
                    predicted_price=round(predicted, 2),
                    horizon_hours=horizon.total_seconds() / 3600,
                    confidence=confidence,
                    direction=direction,
                )
            )

        return predictions

    # =========================================================================
    # Trends
    # =========================================================================

    def _price_trend(self, product_id: str, observations: list[Observation]) -> MarketTrend:
        if not observations:
            return MarketTrend(
                product_id=product_id,
                type=TrendType.PRICE_LEVEL,
                confidence=0.0,
                confidence_level=ConfidenceLevel.LOW,
            )

        fits = []
        for competitor, series in self._group(observations).items():
            slope = self._fit_slope(series, [o.price for o in series])
            if slope is not None:
                mean_price = statistics.fmean(o.price for o in series)
                fits.append(_SeriesFit(competitor, len(series), slope / mean_price))

        return self._combine(product_id, TrendType.PRICE_LEVEL, fits, len(observations))

    def _demand_trend(
        self, product_id: str, observations: list[Observation]
    ) -> Optional[MarketTrend]:
        if len({o.available for o in observations}) < 2:
            return None

        fits = []
        for competitor, series in self._group(observations).items():
            stockouts = [0.0 if o.available else 1.0 for o in series]
            slope = self._fit_slope(series, stockouts)
            if slope is not None:
                fits.append(_SeriesFit(competitor, len(series), slope))

        return self._combine(product_id, TrendType.DEMAND_PROXY, fits, len(observations))

    def _combine(
        self,
        product_id: str,
        trend_type: TrendType,
        fits: list[_SeriesFit],
        samples: int,
    ) -> MarketTrend:
        tolerance = self.settings.trend_flat_tolerance
        score = confidence_score(samples, self.settings.trend_min_samples)

        if fits:
            weight = sum(f.samples for f in fits)
            slope = sum(f.slope * f.samples for f in fits) / weight
        else:
            slope = 0.0

        if abs(slope) <= tolerance:
            direction = TrendDirection.STABLE
        elif slope > 0:
            direction = TrendDirection.UP
        else:
            direction = TrendDirection.DOWN

        max_slope = max((abs(f.slope) for f in fits), default=0.0)
        if direction == TrendDirection.STABLE or max_slope <= tolerance:
            strength = 0.0
        else:
            strength = min(1.0, abs(slope) / max_slope)

        if direction == TrendDirection.STABLE:
            affected = []
        else:
            sign = 1 if direction == TrendDirection.UP else -1
            affected = [f.competitor for f in fits if f.slope * sign > tolerance]

        return MarketTrend(
            product_id=product_id,
            type=trend_type,
            direction=direction,
            strength=strength,
            slope=slope,
            confidence=score,
            confidence_level=confidence_level(score),
            sample_count=samples,
            affected_competitors=affected,
        )

    @staticmethod
    def _group(observations: Iterable[Observation]) -> dict[str, list[Observation]]:
        groups: dict[str, list[Observation]] = defaultdict(list)
        for observation in sorted(observations, key=lambda o: o.timestamp):
            groups[observation.competitor].append(observation)
        return groups

    @staticmethod
    def _fit_slope(series: list[Observation], values: list[float]) -> Optional[float]:
        """Least-squares slope of ``values`` per day, or None if time never varies."""
        if len(series) < 2:
            return None
        origin = series[0].timestamp
        days = [(o.timestamp - origin).total_seconds() / SECONDS_PER_DAY for o in series]
        if max(days) == min(days):
            return None
        return statistics.linear_regression(days, values).slope

    # =========================================================================
    # Insights
    # =========================================================================

    def _insights(
        self,
        current_price: float,
        position: Optional[CompetitivePosition],
        price_trend: MarketTrend,
    ) -> list[MarketInsight]:
        insights: list[MarketInsight] = []
        if position is None:
            return insights

        if position.price_dispersion_percent > DISPERSION_INSIGHT_PERCENT:
            insights.append(
                MarketInsight(
                    type=InsightType.OPPORTUNITY,
                    severity=Severity.HIGH,
                    title="High price dispersion",
                    detail=(
                        f"Competitor prices spread {position.price_dispersion_percent:.1f}% "
                        "around the average; the market is not settled on a price."
                    ),
                    confidence=0.85,
                )
            )

        if (
            position.category == PositionCategory.ABOVE_MARKET
            and position.percentile > PREMIUM_INSIGHT_PERCENTILE
        ):
            insights.append(
                MarketInsight(
                    type=InsightType.THREAT,
                    severity=Severity.MEDIUM,
                    title="Premium position risk",
                    detail=(
                        f"Priced at the {position.percentile:.0f}th percentile, above "
                        f"the {position.average_price:.2f} market average."
                    ),
                    confidence=0.75,
                )
            )

        if (
            position.category == PositionCategory.BELOW_MARKET
            and position.percentile < LEADER_INSIGHT_PERCENTILE
        ):
            insights.append(
                MarketInsight(
                    type=InsightType.OPPORTUNITY,
                    severity=Severity.HIGH,
                    title="Price leadership",
                    detail=(
                        f"Cheapest offer in the market (lowest competitor "
                        f"{position.lowest_price:.2f}); there is room for gradual increases."
                    ),
                    confidence=0.9,
                )
            )

        if current_price > position.average_price * OVERPRICED_RATIO:
            insights.append(
                MarketInsight(
                    type=InsightType.RECOMMENDATION,
                    severity=Severity.HIGH,
                    title="Price adjustment suggested",
                    detail=(
                        f"Current price {current_price:.2f} is more than 10% above the "
                        f"{position.average_price:.2f} market average."
                    ),
                    confidence=0.8,
                )
            )

        if current_price < position.lowest_price * UNDERPRICED_RATIO:
            insights.append(
                MarketInsight(
                    type=InsightType.RECOMMENDATION,
                    severity=Severity.MEDIUM,
                    title="Price increase opportunity",
                    detail=(
                        f"Current price {current_price:.2f} is more than 10% below the "
                        f"lowest competitor at {position.lowest_price:.2f}."
                    ),
                    confidence=0.75,
                )
            )

        if (
            price_trend.direction in (TrendDirection.UP, TrendDirection.DOWN)
            and price_trend.confidence_level != ConfidenceLevel.LOW
        ):
            rising = price_trend.direction == TrendDirection.UP
            insights.append(
                MarketInsight(
                    type=InsightType.TREND,
                    severity=Severity.MEDIUM if (price_trend.strength or 0) >= 0.5 else Severity.LOW,
                    title="Competitor prices rising" if rising else "Competitor prices falling",
                    detail=(
                        f"{len(price_trend.affected_competitors)} competitor(s) moving "
                        f"{price_trend.slope * 100:+.2f}% per day."
                    ),
                    confidence=price_trend.confidence,
                )
            )

        return insights


__all__ = [
    "MarketIntelligenceAnalyzer",
    "confidence_score",
    "confidence_level",
    "latest_per_competitor",
    "percentile_rank",
]
