"""Analyzers module for the price intelligence engine."""

from price_intel.analyzers.change_detector import (
    SEVERITY_THRESHOLDS,
    ChangeDetector,
    change_percent,
    classify_severity,
)
from price_intel.analyzers.market_intelligence import (
    MarketIntelligenceAnalyzer,
    confidence_level,
    confidence_score,
    percentile_rank,
)

__all__ = [
    # Change detection
    "SEVERITY_THRESHOLDS",
    "ChangeDetector",
    "change_percent",
    "classify_severity",
    # Market intelligence
    "MarketIntelligenceAnalyzer",
    "confidence_level",
    "confidence_score",
    "percentile_rank",
]
