"""Data models module for the price intelligence engine."""

from price_intel.models.schemas import (
    # Base Models
    BaseModel,

    # Enums
    Severity,
    ConfidenceLevel,
    TrendDirection,
    TrendType,
    PositionCategory,
    ReasoningTag,
    JobState,
    FetchErrorKind,
    InsightType,
    DataStatus,
    RiskReason,

    # Catalog & observations
    Product,
    Observation,
    FetchResult,

    # Tracking
    TrackingJob,
    TrackingStats,
    PriceAlert,

    # Market intelligence
    MarketTrend,
    CompetitivePosition,
    MarketInsight,
    PricePrediction,
    MarketAnalysis,

    # Pricing
    PricingRecommendation,
    PortfolioSummary,
    IntelligenceReport,
)

__all__ = [
    "BaseModel",
    "Severity",
    "ConfidenceLevel",
    "TrendDirection",
    "TrendType",
    "PositionCategory",
    "ReasoningTag",
    "JobState",
    "FetchErrorKind",
    "InsightType",
    "DataStatus",
    "RiskReason",
    "Product",
    "Observation",
    "FetchResult",
    "TrackingJob",
    "TrackingStats",
    "PriceAlert",
    "MarketTrend",
    "CompetitivePosition",
    "MarketInsight",
    "PricePrediction",
    "MarketAnalysis",
    "PricingRecommendation",
    "PortfolioSummary",
    "IntelligenceReport",
]
