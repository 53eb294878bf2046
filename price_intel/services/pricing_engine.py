"""
Deterministic pricing recommendation engine.

For one product, the engine builds a market reference price from the
latest usable observation of each competitor and then blends the current
price toward it. Which blend applies depends on the product's margin and
market position, and the chosen branch is reported as a ``ReasoningTag``.
The result is never below ``cost * (1 + minimum_margin)``.

Every recommendation also carries a data-quality score (0-100): 70% mean
source reliability plus 30% freshness, where an observation loses all of
its freshness over ``DATA_FRESHNESS_HOURS``. Below ``MIN_DATA_QUALITY`` no
price is recommended; below ``LOW_DATA_QUALITY`` confidence is low.

Branches, first match wins:
    margin-floor-protection  current price at or below the floor
    market-aligned           within ALIGNMENT_TOLERANCE of the market
    above-market-headroom    margin well above historical, priced above market
    below-market-headroom    priced below the market
    premium-hold             priced above market without margin headroom
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Iterable, Optional

from price_intel.analyzers.market_intelligence import latest_per_competitor
from price_intel.config.settings import Settings, get_settings
from price_intel.models.schemas import (
    ConfidenceLevel,
    MarketTrend,
    Observation,
    PricingRecommendation,
    Product,
    ReasoningTag,
    ensure_utc,
)
from price_intel.utils.logger import get_logger

logger = get_logger(__name__)


def round_price(value: float) -> float:
    return round(value + 1e-9, 2)


def ceil_cents(value: float) -> float:
    """Smallest cent amount not below ``value``."""
    cents = math.ceil(value * 100)
    if cents / 100 < value:
        cents += 1
    return cents / 100


def psychological_price(price: float) -> float:
    """
    Charm-price a value by magnitude band.

    Under 1 the price is kept; under 20 it snaps to .99/.49 endings; under
    100 to .99/.95; under 1000 to the nearest 5 minus a cent; above that to
    the nearest 10 minus one.
    """
    if price < 1:
        return round_price(price)
    if price < 20:
        base = math.floor(price)
        remainder = price - base
        if remainder < 0.25:
            return round_price(base - 0.01)
        if remainder < 0.75:
            return round_price(base + 0.49)
        return round_price(base + 0.99)
    if price < 100:
        base = math.floor(price)
        if price - base < 0.5:
            return round_price(base - 0.01)
        return round_price(base + 0.95)
    if price < 1000:
        return round_price(round(price / 5) * 5 - 0.01)
    return round_price(round(price / 10) * 10 - 1)


class PricingRecommendationEngine:
    """
    Pure, synchronous pricing engine.

    Example:
        >>> engine = PricingRecommendationEngine(settings)
        >>> rec = engine.recommend(product, observations, analysis.price_trend)
        >>> rec.reasoning
        'above-market-headroom'
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def minimum_price(self, product: Product) -> float:
        return product.cost * (1 + self.settings.minimum_margin)

    def margin_floor(self, product: Product) -> float:
        """Lowest cent price the engine may recommend for ``product``."""
        return ceil_cents(self.minimum_price(product))

    def _usable(
        self,
        product: Product,
        observations: Iterable[Observation],
        as_of: Optional[datetime],
    ) -> tuple[list[Observation], Optional[datetime]]:
        candidates = [
            o for o in observations
            if o.product_id == product.id and o.currency == product.currency
        ]
        if not candidates:
            return [], None

        if as_of is None:
            as_of = max(o.timestamp for o in candidates)
        as_of = ensure_utc(as_of)
        cutoff = as_of - timedelta(hours=self.settings.observation_window_hours)

        latest = latest_per_competitor(
            o for o in candidates if cutoff <= o.timestamp <= as_of
        )
        return [o for o in latest.values() if o.available], as_of

    def market_reference(
        self,
        product: Product,
        observations: Iterable[Observation],
        as_of: Optional[datetime] = None,
    ) -> tuple[Optional[float], int]:
        """
        Confidence-weighted mean of the latest usable price per competitor.

        Observations for other products, in another currency, out of stock or
        older than the observation window are ignored.

        Returns:
            (reference price or None, number of competitors used)
        """
        usable, _ = self._usable(product, observations, as_of)
        if not usable:
            return None, 0

        total_weight = sum(o.source_confidence for o in usable)
        if total_weight > 0:
            reference = sum(o.price * o.source_confidence for o in usable) / total_weight
        else:
            reference = sum(o.price for o in usable) / len(usable)
        return reference, len(usable)

    def data_quality(
        self, observations: list[Observation], as_of: datetime
    ) -> tuple[float, list[str]]:
        """
        Score the observations behind a recommendation.

        Args:
            observations: Latest usable observation per competitor.
            as_of: Instant freshness is measured against.

        Returns:
            (score 0-100, warnings)
        """
        s = self.settings
        if not observations:
            return 0.0, ["No competitor data available"]

        as_of = ensure_utc(as_of)
        reliability = sum(o.source_confidence for o in observations) / len(observations)
        ages = [max(0.0, (as_of - o.timestamp).total_seconds() / 3600) for o in observations]
        freshness = sum(
            max(0.0, 1 - age / s.data_freshness_hours) for age in ages
        ) / len(observations)
        score = round((reliability * 0.7 + freshness * 0.3) * 100, 1)

        warnings = []
        if score < s.low_data_quality:
            warnings.append("Low data quality - results may be inaccurate")
        stale = sum(1 for age in ages if age >= s.data_freshness_hours)
        if stale:
            warnings.append(
                f"{stale} of {len(observations)} competitor prices are older than "
                f"{s.data_freshness_hours:g}h"
            )
        if any(o.source_confidence < 0.5 for o in observations):
            warnings.append("Some competitor prices come from unreliable sources")
        return score, warnings

    def recommend(
        self,
        product: Product,
        observations: Iterable[Observation],
        trend: Optional[MarketTrend] = None,
        as_of: Optional[datetime] = None,
    ) -> PricingRecommendation:
        """Recommend a price for ``product`` from competitor observations."""
        s = self.settings
        current_price = product.current_price
        usable, as_of = self._usable(product, observations, as_of)

        if not usable:
            logger.info("Insufficient market data for recommendation", product_id=product.id)
            return self._insufficient(product, 0.0, ["No competitor data available"])

        market, competitor_count = self.market_reference(product, usable, as_of)
        quality, warnings = self.data_quality(usable, as_of)
        if quality < s.min_data_quality:
            logger.info(
                "Data quality too low for recommendation",
                product_id=product.id,
                data_quality=quality,
            )
            return self._insufficient(
                product, quality, warnings,
                market_reference_price=market,
                competitor_count=competitor_count,
            )

        floor = self.margin_floor(product)
        candidate, reasoning = self._candidate(product, market, floor)

        if s.psychological_pricing and reasoning != ReasoningTag.MARKET_ALIGNED:
            candidate = psychological_price(candidate)
        candidate = round_price(candidate)

        if candidate < self.minimum_price(product):
            candidate = floor
            reasoning = ReasoningTag.MARGIN_FLOOR_PROTECTION

        price_change = candidate - current_price
        confidence = self._confidence(competitor_count, trend, quality)

        logger.debug(
            "Pricing recommendation computed",
            product_id=product.id,
            market_reference=round(market, 4),
            recommended_price=candidate,
            reasoning=reasoning.value,
            confidence=confidence.value,
            data_quality=quality,
        )

        return PricingRecommendation(
            product_id=product.id,
            current_price=current_price,
            cost=product.cost,
            units_sold=product.units_sold,
            current_margin=product.current_margin,
            recommended_price=candidate,
            projected_margin=(candidate - product.cost) / candidate,
            price_change=price_change,
            price_change_percent=price_change / current_price * 100,
            revenue_impact=price_change * product.units_sold,
            confidence=confidence,
            reasoning=reasoning,
            market_reference_price=market,
            competitor_count=competitor_count,
            data_quality_score=quality,
            data_quality_warnings=warnings,
        )

    @staticmethod
    def _insufficient(
        product: Product, quality: float, warnings: list[str], **extra
    ) -> PricingRecommendation:
        return PricingRecommendation(
            product_id=product.id,
            current_price=product.current_price,
            cost=product.cost,
            units_sold=product.units_sold,
            current_margin=product.current_margin,
            confidence=ConfidenceLevel.LOW,
            reasoning=ReasoningTag.INSUFFICIENT_DATA,
            data_quality_score=quality,
            data_quality_warnings=warnings,
            **extra,
        )

    def _candidate(
        self, product: Product, market: float, floor: float
    ) -> tuple[float, ReasoningTag]:
        s = self.settings
        current = product.current_price
        historical = (
            product.historical_margin
            if product.historical_margin is not None
            else s.historical_margin
        )
        gap = market - current

        if current <= floor:
            # Never lowers the price; the final clamp lifts it to the floor.
            return current + max(0.0, gap) * s.floor_raise_weight, ReasoningTag.MARGIN_FLOOR_PROTECTION

        if abs(gap) <= market * s.alignment_tolerance:
            return current, ReasoningTag.MARKET_ALIGNED

        if product.current_margin > historical + s.headroom_tolerance and current > market:
            return current + gap * s.market_bias_weight, ReasoningTag.ABOVE_MARKET_HEADROOM

        if current < market:
            return current + gap * s.raise_weight, ReasoningTag.BELOW_MARKET_HEADROOM

        return current + gap * s.hold_weight, ReasoningTag.PREMIUM_HOLD

    def _confidence(
        self, competitor_count: int, trend: Optional[MarketTrend], quality: float
    ) -> ConfidenceLevel:
        s = self.settings
        if competitor_count < 2 or quality < s.low_data_quality:
            return ConfidenceLevel.LOW
        if (
            competitor_count >= s.min_competitors_for_high
            and quality >= s.high_data_quality
            and trend is not None
            and trend.confidence_level == ConfidenceLevel.HIGH
        ):
            return ConfidenceLevel.HIGH
        return ConfidenceLevel.MEDIUM


__all__ = [
    "PricingRecommendationEngine",
    "psychological_price",
    "round_price",
    "ceil_cents",
]
