"""
Pydantic models and schemas for the price intelligence engine.

This module defines every record the engine consumes or produces. Field
names are snake_case in Python and camelCase on the wire (``currentPrice``,
``unitsSold``, ...), which is the canonical vocabulary at the API boundary.

Models:
    - Product: merchant catalog entry (economics of one SKU)
    - Observation: one timestamped competitor price reading
    - FetchResult: outcome of one ObservationSource call
    - TrackingJob: recurring competitor sampling job for one product
    - PriceAlert: competitor price movement worth reporting
    - MarketTrend / CompetitivePosition / MarketAnalysis: analyzer output
    - PricingRecommendation: per-product pricing action
    - PortfolioSummary: roll-up over many recommendations
    - IntelligenceReport: everything known about one product right now
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Self
from uuid import uuid4

from pydantic import (
    BaseModel as PydanticBaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# Base Configuration
# =============================================================================

class BaseModel(PydanticBaseModel):
    """Base model with common configuration for all schemas."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=False,
        populate_by_name=True,
        use_enum_values=True,
        alias_generator=to_camel,
        ser_json_timedelta="iso8601",
    )

    def to_json(self, **kwargs) -> str:
        """Serialize model to a camelCase JSON string."""
        kwargs.setdefault("by_alias", True)
        return self.model_dump_json(indent=2, **kwargs)

    def to_dict(self, **kwargs) -> dict[str, Any]:
        """Serialize model to a camelCase dictionary."""
        kwargs.setdefault("by_alias", True)
        return self.model_dump(**kwargs)

    @classmethod
    def from_json(cls, json_str: str) -> Self:
        """Deserialize model from JSON string."""
        return cls.model_validate_json(json_str)


# =============================================================================
# Enums
# =============================================================================

class Severity(str, Enum):
    """Ordinal classification of how large a competitor price change is."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ConfidenceLevel(str, Enum):
    """Qualitative reliability label for trends and recommendations."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class TrendType(str, Enum):
    PRICE_LEVEL = "price_level"
    DEMAND_PROXY = "demand_proxy"


class PositionCategory(str, Enum):
    """Merchant price bucket relative to the competitor price distribution."""
    BELOW_MARKET = "below_market"
    AT_MARKET = "at_market"
    ABOVE_MARKET = "above_market"


class ReasoningTag(str, Enum):
    """Which branch of the recommendation algorithm produced the price."""
    MARGIN_FLOOR_PROTECTION = "margin-floor-protection"
    ABOVE_MARKET_HEADROOM = "above-market-headroom"
    BELOW_MARKET_HEADROOM = "below-market-headroom"
    MARKET_ALIGNED = "market-aligned"
    PREMIUM_HOLD = "premium-hold"
    INSUFFICIENT_DATA = "insufficient-data"


class JobState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class FetchErrorKind(str, Enum):
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"


class InsightType(str, Enum):
    OPPORTUNITY = "opportunity"
    THREAT = "threat"
    TREND = "trend"
    RECOMMENDATION = "recommendation"


class DataStatus(str, Enum):
    """Lets the boundary tell "no data yet" apart from "tracking failed"."""
    OK = "ok"
    NO_DATA = "no_data"
    TRACKING_FAILED = "tracking_failed"


class RiskReason(str, Enum):
    NEGATIVE_REVENUE_IMPACT = "negative-revenue-impact"
    LOW_CONFIDENCE = "low-confidence"


# =============================================================================
# Catalog & Observation Models
# =============================================================================

class Product(BaseModel):
    """
    Merchant catalog entry.

    Owned by the merchant and mutated only by catalog sync; the engine treats
    it as immutable for the duration of one cycle.

    Example:
        >>> Product(id="sku-1", cost=50, current_price=100, units_sold=120)
    """

    id: str = Field(..., min_length=1, max_length=200, description="Product identifier")
    cost: float = Field(..., ge=0, description="Unit cost")
    current_price: float = Field(..., gt=0, description="Current selling price")
    currency: str = Field(default="USD", min_length=3, max_length=3, description="ISO 4217 code")
    units_sold: float = Field(default=0, ge=0, description="Units sold in the trailing period")
    category: str = Field(default="General", description="Catalog category")
    historical_margin: Optional[float] = Field(
        default=None,
        ge=0,
        lt=1,
        description="Merchant's usual margin for this product; falls back to settings",
    )

    @field_validator("currency", mode="before")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.strip().upper() if isinstance(v, str) else v

    @property
    def current_margin(self) -> float:
        return (self.current_price - self.cost) / self.current_price


class Observation(BaseModel):
    """
    A single timestamped price reading for one competitor on one product.

    Never mutated after creation.
    """

    model_config = ConfigDict(frozen=True)

    product_id: str = Field(..., min_length=1)
    competitor: str = Field(..., min_length=1)
    price: float = Field(..., gt=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    available: bool = Field(default=True, description="Whether the competitor has stock")
    timestamp: datetime = Field(default_factory=utc_now)
    source_confidence: float = Field(default=1.0, ge=0, le=1)

    @field_validator("currency", mode="before")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class FetchResult(BaseModel):
    """
    Outcome of one ObservationSource call.

    Failures are results, not exceptions: ``observation`` is set on success,
    ``error_kind`` otherwise.
    """

    product_id: str
    competitor: str
    observation: Optional[Observation] = None
    error_kind: Optional[FetchErrorKind] = None
    message: Optional[str] = None

    @model_validator(mode="after")
    def check_exclusive(self) -> Self:
        if (self.observation is None) == (self.error_kind is None):
            raise ValueError("FetchResult needs exactly one of observation or error_kind")
        return self

    @property
    def ok(self) -> bool:
        return self.observation is not None

    @classmethod
    def success(cls, observation: Observation) -> "FetchResult":
        return cls(
            product_id=observation.product_id,
            competitor=observation.competitor,
            observation=observation,
        )

    @classmethod
    def failure(
        cls,
        product_id: str,
        competitor: str,
        kind: FetchErrorKind = FetchErrorKind.UNAVAILABLE,
        message: Optional[str] = None,
    ) -> "FetchResult":
        return cls(product_id=product_id, competitor=competitor, error_kind=kind, message=message)


# =============================================================================
# Tracking Models
# =============================================================================

class TrackingJob(BaseModel):
    """Recurring competitor sampling job. At most one non-stopped job per product."""

    id: str = Field(default_factory=lambda: f"job-{uuid4().hex[:12]}")
    product_id: str = Field(..., min_length=1)
    competitors: list[str] = Field(..., min_length=1)
    interval_minutes: float = Field(..., gt=0)
    state: JobState = Field(default=JobState.IDLE)
    created_at: datetime = Field(default_factory=utc_now)
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    tick_count: int = Field(default=0, ge=0)
    skipped_ticks: int = Field(default=0, ge=0)
    error_count: int = Field(default=0, ge=0, description="Failed competitor fetches, lifetime")
    consecutive_failures: int = Field(
        default=0, ge=0, description="Ticks in a row where every fetch failed"
    )
    last_error: Optional[str] = None

    @field_validator("competitors")
    @classmethod
    def dedupe_competitors(cls, v: list[str]) -> list[str]:
        seen: list[str] = []
        for name in v:
            name = name.strip()
            if name and name not in seen:
                seen.append(name)
        if not seen:
            raise ValueError("At least one competitor is required")
        return seen

    @property
    def is_active(self) -> bool:
        return self.state != JobState.STOPPED

    @property
    def interval_seconds(self) -> float:
        return self.interval_minutes * 60


class TrackingStats(BaseModel):
    active_jobs: int = 0
    total_errors: int = 0
    next_run_time: Optional[datetime] = None


class PriceAlert(BaseModel):
    """Competitor price movement. Immutable once emitted."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"alert-{uuid4().hex[:12]}")
    product_id: str
    competitor: str
    old_price: float = Field(..., gt=0)
    new_price: float = Field(..., gt=0)
    change_percent: float
    severity: Severity
    timestamp: datetime = Field(default_factory=utc_now)


# =============================================================================
# Market Intelligence Models
# =============================================================================

class MarketTrend(BaseModel):
    """
    Direction and strength of price (or stock-out) movement within a window.

    ``direction`` and ``strength`` are null when there is no data to fit.
    """

    product_id: str
    type: TrendType = TrendType.PRICE_LEVEL
    direction: Optional[TrendDirection] = None
    strength: Optional[float] = Field(default=None, ge=0, le=1)
    slope: Optional[float] = Field(default=None, description="Relative change per day")
    confidence: float = Field(default=0.0, ge=0, le=1)
    confidence_level: ConfidenceLevel = ConfidenceLevel.LOW
    sample_count: int = Field(default=0, ge=0)
    affected_competitors: list[str] = Field(default_factory=list)


class CompetitivePosition(BaseModel):
    current_price: float
    percentile: float = Field(..., ge=0, le=100)
    category: PositionCategory
    competitor_count: int = Field(..., ge=1)
    lowest_price: float
    highest_price: float
    average_price: float
    price_dispersion_percent: float = Field(default=0.0, ge=0)


class MarketInsight(BaseModel):
    type: InsightType
    severity: Severity
    title: str
    detail: str
    confidence: float = Field(..., ge=0, le=1)


class PricePrediction(BaseModel):
    competitor: str
    current_price: float
    predicted_price: float
    horizon_hours: float = Field(..., gt=0)
    confidence: float = Field(..., ge=0, le=1)
    direction: TrendDirection


class MarketAnalysis(BaseModel):
    product_id: str
    trends: list[MarketTrend] = Field(default_factory=list)
    position: Optional[CompetitivePosition] = None
    insights: list[MarketInsight] = Field(default_factory=list)
    predictions: list[PricePrediction] = Field(default_factory=list)
    observation_count: int = 0
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None

    @property
    def price_trend(self) -> Optional[MarketTrend]:
        for trend in self.trends:
            if trend.type == TrendType.PRICE_LEVEL:
                return trend
        return None


# =============================================================================
# Pricing Models
# =============================================================================

class PricingRecommendation(BaseModel):
    """
    Per-product pricing action.

    Numeric projections are null when the market reference could not be
    built (``reasoning == insufficient-data``).
    """

    product_id: str
    current_price: float = Field(..., gt=0)
    cost: float = Field(..., ge=0)
    units_sold: float = Field(default=0, ge=0)
    current_margin: float
    recommended_price: Optional[float] = None
    projected_margin: Optional[float] = None
    price_change: Optional[float] = None
    price_change_percent: Optional[float] = None
    revenue_impact: Optional[float] = None
    confidence: ConfidenceLevel
    reasoning: ReasoningTag
    market_reference_price: Optional[float] = None
    competitor_count: int = Field(default=0, ge=0)
    data_quality_score: float = Field(default=0.0, ge=0, le=100)
    data_quality_warnings: list[str] = Field(default_factory=list)

    @property
    def current_revenue(self) -> float:
        return self.current_price * self.units_sold

    @property
    def projected_revenue(self) -> float:
        price = self.recommended_price if self.recommended_price is not None else self.current_price
        return price * self.units_sold


class PortfolioSummary(BaseModel):
    total_products: int = 0
    total_current_revenue: float = 0.0
    total_projected_revenue: float = 0.0
    revenue_uplift: float = 0.0
    revenue_uplift_percent: float = 0.0
    average_margin_improvement: Optional[float] = None
    high_confidence_count: int = 0
    top_opportunities: list[PricingRecommendation] = Field(default_factory=list)
    risk_products: list[PricingRecommendation] = Field(default_factory=list)
    risk_flags: dict[str, list[RiskReason]] = Field(default_factory=dict)


class IntelligenceReport(BaseModel):
    """Everything currently known about one product."""

    product_id: str
    data_status: DataStatus
    observations: list[Observation] = Field(default_factory=list)
    alerts: list[PriceAlert] = Field(default_factory=list)
    trends: list[MarketTrend] = Field(default_factory=list)
    position: Optional[CompetitivePosition] = None
    insights: list[MarketInsight] = Field(default_factory=list)
    recommendation: PricingRecommendation
    generated_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# Export All Models
# =============================================================================

__all__ = [
    # Base
    "BaseModel",
    "utc_now",
    "ensure_utc",

    # Enums
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

    # Catalog & observations
    "Product",
    "Observation",
    "FetchResult",

    # Tracking
    "TrackingJob",
    "TrackingStats",
    "PriceAlert",

    # Market intelligence
    "MarketTrend",
    "CompetitivePosition",
    "MarketInsight",
    "PricePrediction",
    "MarketAnalysis",

    # Pricing
    "PricingRecommendation",
    "PortfolioSummary",
    "IntelligenceReport",
]
