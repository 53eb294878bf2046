"""
Services package for the price intelligence engine.

Services:
    - PricingRecommendationEngine: deterministic per-product pricing
    - PortfolioAggregator: portfolio roll-up of recommendations

The boundary facade lives in ``price_intel.services.intelligence_service``
and is imported from there directly (it depends on the pipeline package).
"""

from price_intel.services.portfolio import PortfolioAggregator
from price_intel.services.pricing_engine import (
    PricingRecommendationEngine,
    psychological_price,
)

__all__ = [
    "PricingRecommendationEngine",
    "PortfolioAggregator",
    "psychological_price",
]
