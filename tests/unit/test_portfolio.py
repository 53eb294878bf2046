import pytest
from price_intel.models.schemas import (
    ConfidenceLevel,
    PricingRecommendation,
    ReasoningTag,
    RiskReason,
)
from price_intel.services.portfolio import PortfolioAggregator


def _rec(product_id, current, recommended, units=10, cost=50, confidence=ConfidenceLevel.MEDIUM):
    change = None if recommended is None else recommended - current
    return PricingRecommendation(
        product_id=product_id,
        current_price=current,
        cost=cost,
        units_sold=units,
        current_margin=(current - cost) / current,
        recommended_price=recommended,
        projected_margin=None if recommended is None else (recommended - cost) / recommended,
        price_change=change,
        price_change_percent=None if change is None else change / current * 100,
        revenue_impact=None if change is None else change * units,
        confidence=confidence,
        reasoning=(
            ReasoningTag.INSUFFICIENT_DATA if recommended is None
            else ReasoningTag.BELOW_MARKET_HEADROOM
        ),
    )


@pytest.fixture
def aggregator(settings):
    return PortfolioAggregator(settings)


@pytest.fixture
def recommendations():
    return [
        _rec("a", 100, 110, confidence=ConfidenceLevel.HIGH),
        _rec("b", 100, 95),
        _rec("c", 80, None, confidence=ConfidenceLevel.LOW),
        _rec("d", 60, 75, units=4),
        _rec("e", 70, 71, units=1, confidence=ConfidenceLevel.LOW),
    ]


def test_totals(aggregator, recommendations):
    summary = aggregator.aggregate(recommendations)

    assert summary.total_products == 5
    assert summary.total_current_revenue == pytest.approx(1000 + 1000 + 800 + 240 + 70)
    assert summary.total_projected_revenue == pytest.approx(1100 + 950 + 800 + 300 + 71)
    assert summary.revenue_uplift == pytest.approx(111.0)
    assert summary.revenue_uplift_percent == pytest.approx(111.0 / 3110 * 100)
    assert summary.high_confidence_count == 1


def test_top_opportunities_sorted_and_limited(aggregator, recommendations):
    summary = aggregator.aggregate(recommendations, top_n=2)
    assert [r.product_id for r in summary.top_opportunities] == ["a", "d"]

    summary = aggregator.aggregate(recommendations)
    assert [r.product_id for r in summary.top_opportunities] == ["a", "d", "e"]


def test_risk_flags(aggregator, recommendations):
    summary = aggregator.aggregate(recommendations)

    assert [r.product_id for r in summary.risk_products] == ["b", "c", "e"]
    assert summary.risk_flags == {
        "b": [RiskReason.NEGATIVE_REVENUE_IMPACT],
        "c": [RiskReason.LOW_CONFIDENCE],
        "e": [RiskReason.LOW_CONFIDENCE],
    }


def test_risk_products_are_unique(aggregator):
    rec = _rec("x", 100, 90, confidence=ConfidenceLevel.LOW)
    summary = aggregator.aggregate([rec, rec])

    assert [r.product_id for r in summary.risk_products] == ["x"]
    assert summary.risk_flags["x"] == [
        RiskReason.NEGATIVE_REVENUE_IMPACT,
        RiskReason.LOW_CONFIDENCE,
    ]


def test_aggregation_is_additive(aggregator, recommendations):
    whole = aggregator.aggregate(recommendations)
    left = aggregator.aggregate(recommendations[:2])
    right = aggregator.aggregate(recommendations[2:])

    assert whole.total_current_revenue == pytest.approx(
        left.total_current_revenue + right.total_current_revenue
    )
    assert whole.total_projected_revenue == pytest.approx(
        left.total_projected_revenue + right.total_projected_revenue
    )
    assert set(whole.risk_flags) == set(left.risk_flags) | set(right.risk_flags)


def test_average_margin_improvement(aggregator):
    summary = aggregator.aggregate([_rec("a", 100, 110), _rec("b", 80, None)])
    assert summary.average_margin_improvement == pytest.approx((60 / 110) - 0.5)

    summary = aggregator.aggregate([_rec("b", 80, None)])
    assert summary.average_margin_improvement is None


def test_empty_portfolio(aggregator):
    summary = aggregator.aggregate([])

    assert summary.total_products == 0
    assert summary.revenue_uplift_percent == 0.0
    assert summary.top_opportunities == []
    assert summary.risk_flags == {}
