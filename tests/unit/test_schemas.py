import pytest
import json
from datetime import datetime, timedelta, timezone
from pydantic import ValidationError
from price_intel.models.schemas import (
    FetchErrorKind,
    FetchResult,
    JobState,
    MarketAnalysis,
    MarketTrend,
    Observation,
    PriceAlert,
    Product,
    Severity,
    TrackingJob,
    TrendType,
)


def test_product_defaults_and_margin():
    product = Product(id="sku-1", cost=50, current_price=100, currency=" usd ")

    assert product.currency == "USD"
    assert product.category == "General"
    assert product.units_sold == 0
    assert product.current_margin == pytest.approx(0.5)


def test_product_validation():
    with pytest.raises(ValidationError):
        Product(id="sku-1", cost=50, current_price=0)
    with pytest.raises(ValidationError):
        Product(id="sku-1", cost=-1, current_price=10)
    with pytest.raises(ValidationError):
        Product(id="", cost=1, current_price=10)


def test_product_accepts_camel_case():
    product = Product.model_validate(
        {"id": "sku-1", "cost": 10, "currentPrice": 20, "unitsSold": 5, "historicalMargin": 0.4}
    )
    assert product.current_price == 20
    assert product.units_sold == 5
    assert product.historical_margin == 0.4


def test_observation_timestamp_normalized_to_utc():
    naive = Observation(product_id="p", competitor="c", price=10, timestamp=datetime(2024, 5, 1, 12))
    assert naive.timestamp.tzinfo == timezone.utc

    offset = timezone(timedelta(hours=2))
    aware = Observation(
        product_id="p", competitor="c", price=10, timestamp=datetime(2024, 5, 1, 14, tzinfo=offset)
    )
    assert aware.timestamp == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)


def test_observation_is_immutable():
    observation = Observation(product_id="p", competitor="c", price=10)
    with pytest.raises(ValidationError):
        observation.price = 12


def test_observation_rejects_non_positive_price():
    with pytest.raises(ValidationError):
        Observation(product_id="p", competitor="c", price=0)


def test_fetch_result_is_exclusive():
    observation = Observation(product_id="p", competitor="c", price=10)

    assert FetchResult.success(observation).ok
    failure = FetchResult.failure("p", "c", FetchErrorKind.TIMEOUT, "slow")
    assert not failure.ok
    assert failure.error_kind == FetchErrorKind.TIMEOUT

    with pytest.raises(ValidationError):
        FetchResult(product_id="p", competitor="c")
    with pytest.raises(ValidationError):
        FetchResult(
            product_id="p",
            competitor="c",
            observation=observation,
            error_kind=FetchErrorKind.UNAVAILABLE,
        )


def test_tracking_job_dedupes_competitors():
    job = TrackingJob(product_id="p", competitors=["acme", " acme", "globex", ""], interval_minutes=5)

    assert job.competitors == ["acme", "globex"]
    assert job.id.startswith("job-")
    assert job.state == JobState.IDLE
    assert job.is_active
    assert job.interval_seconds == 300


def test_tracking_job_requires_competitors_and_interval():
    with pytest.raises(ValidationError):
        TrackingJob(product_id="p", competitors=[" "], interval_minutes=5)
    with pytest.raises(ValidationError):
        TrackingJob(product_id="p", competitors=["acme"], interval_minutes=0)


def test_alert_serializes_camel_case():
    alert = PriceAlert(
        product_id="p",
        competitor="c",
        old_price=100,
        new_price=80,
        change_percent=-20,
        severity=Severity.CRITICAL,
    )
    data = json.loads(alert.to_json())

    assert data["productId"] == "p"
    assert data["changePercent"] == -20
    assert data["severity"] == "critical"
    assert PriceAlert.from_json(alert.to_json()) == alert


def test_market_analysis_price_trend():
    demand = MarketTrend(product_id="p", type=TrendType.DEMAND_PROXY)
    price = MarketTrend(product_id="p", type=TrendType.PRICE_LEVEL)

    assert MarketAnalysis(product_id="p", trends=[demand, price]).price_trend == price
    assert MarketAnalysis(product_id="p").price_trend is None
