"""
Portfolio roll-up of pricing recommendations.

Totals are plain, unrounded sums so aggregating the parts of a split list
and adding them up matches aggregating the whole list.
"""

from __future__ import annotations

from typing import Iterable, Optional

from price_intel.config.settings import Settings, get_settings
from price_intel.models.schemas import (
    ConfidenceLevel,
    PortfolioSummary,
    PricingRecommendation,
    RiskReason,
)
from price_intel.utils.logger import get_logger

logger = get_logger(__name__)


class PortfolioAggregator:
    """Pure aggregation over a list of PricingRecommendation records."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def aggregate(
        self,
        recommendations: Iterable[PricingRecommendation],
        top_n: Optional[int] = None,
    ) -> PortfolioSummary:
        recommendations = list(recommendations)
        top_n = self.settings.top_opportunities if top_n is None else top_n

        total_current = sum(r.current_revenue for r in recommendations)
        total_projected = sum(r.projected_revenue for r in recommendations)
        uplift = total_projected - total_current
        uplift_percent = uplift / total_current * 100 if total_current else 0.0

        improvements = [
            r.projected_margin - r.current_margin
            for r in recommendations
            if r.projected_margin is not None
        ]
        average_improvement = sum(improvements) / len(improvements) if improvements else None

        opportunities = sorted(
            (r for r in recommendations if r.revenue_impact is not None and r.revenue_impact > 0),
            key=lambda r: r.revenue_impact,
            reverse=True,
        )[:top_n]

        risk_flags: dict[str, list[RiskReason]] = {}
        risk_products: list[PricingRecommendation] = []
        for r in recommendations:
            reasons = []
            if r.revenue_impact is not None and r.revenue_impact < 0:
                reasons.append(RiskReason.NEGATIVE_REVENUE_IMPACT)
            if r.confidence == ConfidenceLevel.LOW:
                reasons.append(RiskReason.LOW_CONFIDENCE)
            if not reasons:
                continue
            if r.product_id not in risk_flags:
                risk_flags[r.product_id] = []
                risk_products.append(r)
            for reason in reasons:
                if reason not in risk_flags[r.product_id]:
                    risk_flags[r.product_id].append(reason)

        summary = PortfolioSummary(
            total_products=len(recommendations),
            total_current_revenue=total_current,
            total_projected_revenue=total_projected,
            revenue_uplift=uplift,
            revenue_uplift_percent=uplift_percent,
            average_margin_improvement=average_improvement,
            high_confidence_count=sum(
                1 for r in recommendations if r.confidence == ConfidenceLevel.HIGH
            ),
            top_opportunities=opportunities,
            risk_products=risk_products,
            risk_flags=risk_flags,
        )

        logger.info(
            "Portfolio aggregated",
            products=summary.total_products,
            revenue_uplift=round(uplift, 2),
            opportunities=len(opportunities),
            risks=len(risk_products),
        )
        return summary


__all__ = ["PortfolioAggregator"]
