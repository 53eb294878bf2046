"""
Integration tests for the intelligence service: tracking, pipeline and portfolio.
"""

import asyncio
from datetime import timedelta

import pytest

from price_intel.models.schemas import (
    ConfidenceLevel,
    DataStatus,
    PositionCategory,
    Product,
    ReasoningTag,
    RiskReason,
    Severity,
    TrackingJob,
)
from price_intel.pipeline.orchestrator import IntelligencePipeline
from price_intel.scheduler.tracking import TickOutcome
from price_intel.services.intelligence_service import PriceIntelligenceService
from price_intel.sources.memory import ScriptedObservationSource
from price_intel.storage.repository import InMemoryRepository
from price_intel.utils.retry import ProductNotFoundError

FAST_INTERVAL = 0.05 / 60  # 50ms


async def wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def history(make_observation):
    """acme drops 100 -> 92; globex and initech steady."""
    return [
        make_observation(100, competitor="acme", hours_ago=3),
        make_observation(92, competitor="acme", hours_ago=1),
        make_observation(95, competitor="globex", hours_ago=1),
        make_observation(98, competitor="initech", hours_ago=1),
    ]


# =============================================================================
# Pipeline
# =============================================================================

@pytest.mark.asyncio
async def test_report_for_tracked_product(settings, premium_product, history):
    service = PriceIntelligenceService(ScriptedObservationSource(), settings=settings)
    await service.register_product(premium_product)
    assert await service.record_observations(history) == 4

    report = await service.get_current_intelligence("sku-1")

    assert report.data_status == DataStatus.OK
    assert len(report.observations) == 4
    assert [(a.competitor, a.severity) for a in report.alerts] == [("acme", Severity.MEDIUM)]
    assert report.position.category == PositionCategory.ABOVE_MARKET
    assert report.trends[0].direction is not None

    rec = report.recommendation
    assert rec.reasoning == ReasoningTag.ABOVE_MARKET_HEADROOM
    assert rec.recommended_price == pytest.approx(96.25)
    assert rec.revenue_impact < 0
    # four samples are not enough for a confident trend
    assert rec.confidence == ConfidenceLevel.MEDIUM


@pytest.mark.asyncio
async def test_report_is_repeatable(settings, premium_product, history, now):
    service = PriceIntelligenceService(ScriptedObservationSource(), settings=settings)
    await service.register_product(premium_product)
    await service.record_observations(history)

    first = await service.get_current_intelligence("sku-1", as_of=now)
    second = await service.get_current_intelligence("sku-1", as_of=now)

    assert first.model_dump(exclude={"generated_at"}) == second.model_dump(exclude={"generated_at"})


@pytest.mark.asyncio
async def test_as_of_limits_the_window(settings, premium_product, history, now):
    service = PriceIntelligenceService(ScriptedObservationSource(), settings=settings)
    await service.register_product(premium_product)
    await service.record_observations(history)

    report = await service.get_current_intelligence("sku-1", as_of=now - timedelta(hours=2))

    assert [o.price for o in report.observations] == [100]
    assert report.alerts == []
    assert report.recommendation.confidence == ConfidenceLevel.LOW


@pytest.mark.asyncio
async def test_product_without_observations(settings, premium_product):
    service = PriceIntelligenceService(ScriptedObservationSource(), settings=settings)
    await service.register_product(premium_product)

    report = await service.get_current_intelligence("sku-1")

    assert report.data_status == DataStatus.NO_DATA
    assert report.position is None
    assert report.alerts == []
    assert report.trends[0].direction is None
    assert report.trends[0].confidence == 0.0
    rec = report.recommendation
    assert rec.reasoning == ReasoningTag.INSUFFICIENT_DATA
    assert rec.confidence == ConfidenceLevel.LOW
    assert rec.recommended_price is None


@pytest.mark.asyncio
async def test_unknown_product(settings):
    service = PriceIntelligenceService(ScriptedObservationSource(), settings=settings)

    with pytest.raises(ProductNotFoundError):
        await service.get_current_intelligence("missing")


@pytest.mark.asyncio
async def test_pipeline_records_node_timings(settings, premium_product, history):
    repository = InMemoryRepository()
    await repository.upsert_product(premium_product)
    for observation in history:
        await repository.append_observation(observation)
    pipeline = IntelligencePipeline(repository, settings=settings)

    state = await pipeline._graph.ainvoke({
        "run_id": "run-1",
        "product_id": "sku-1",
        "as_of": max(o.timestamp for o in history).isoformat(),
        "job": None,
        "errors": [],
        "step_timings": {},
    })

    assert set(state["step_timings"]) == {
        "load_data", "detect_changes", "analyze_market", "recommend_price", "build_report",
    }
    assert state["data_status"] == "ok"


# =============================================================================
# Tracking
# =============================================================================

@pytest.mark.asyncio
async def test_tracking_failed_status(settings, premium_product):
    source = ScriptedObservationSource()
    async with PriceIntelligenceService(source, settings=settings) as service:
        await service.register_product(premium_product)
        await service.start_tracking("sku-1", ["acme"], 60)
        await wait_for(lambda: len(source.calls) >= settings.fetch_max_attempts)
        await asyncio.sleep(0.05)

        report = await service.get_current_intelligence("sku-1")

    assert report.data_status == DataStatus.TRACKING_FAILED
    assert report.recommendation.reasoning == ReasoningTag.INSUFFICIENT_DATA


@pytest.mark.asyncio
async def test_start_tracking_requires_registered_product(settings):
    service = PriceIntelligenceService(ScriptedObservationSource(), settings=settings)

    with pytest.raises(ProductNotFoundError):
        await service.start_tracking("missing", ["acme"])


@pytest.mark.asyncio
async def test_ticks_emit_alerts_to_listeners(settings, premium_product):
    source = ScriptedObservationSource({("sku-1", "acme"): [100, 80, 80, 80, 80, 80, 80]})
    received = []
    async_received = []

    async def async_listener(alert):
        async_received.append(alert)

    async with PriceIntelligenceService(source, settings=settings) as service:
        await service.register_product(premium_product)
        service.add_alert_listener(received.append)
        service.add_alert_listener(async_listener)

        job_id = await service.start_tracking("sku-1", ["acme"], FAST_INTERVAL)
        await wait_for(lambda: received)
        job = await service.stop_tracking(job_id)

        alerts = await service.list_alerts("sku-1")
        trends = service.latest_trends("sku-1")
        stored = await service.repository.list_observations("sku-1")

    assert job.tick_count >= 2
    assert received[0].severity == Severity.CRITICAL
    assert received[0].change_percent == pytest.approx(-20.0)
    assert async_received == received
    assert alerts[0] == received[0]
    assert trends and trends[0].product_id == "sku-1"
    assert len(stored) == job.tick_count

@pytest.mark.asyncio
async def test_failing_listener_does_not_lose_tick_state(settings, premium_product, make_observation):
    service = PriceIntelligenceService(ScriptedObservationSource(), settings=settings)
    await service.register_product(premium_product)
    received = []

    def broken_listener(alert):
        raise RuntimeError("listener exploded")

    service.add_alert_listener(broken_listener)
    service.add_alert_listener(received.append)

    priors = {
        "acme": make_observation(100, competitor="acme", hours_ago=1),
        "globex": make_observation(100, competitor="globex", hours_ago=1),
    }
    outcome = TickOutcome(
        job=TrackingJob(product_id="sku-1", competitors=["acme", "globex"], interval_minutes=60),
        observations=[
            make_observation(80, competitor="acme"),
            make_observation(80, competitor="globex"),
        ],
        priors=priors,
    )

    await service.handle_tick(outcome)

    alerts = await service.list_alerts("sku-1")
    assert [a.competitor for a in alerts] == ["acme", "globex"]
    assert all(a.severity == Severity.CRITICAL for a in alerts)
    assert received == alerts
    assert service.latest_trends("sku-1")
    assert len(await service.repository.list_observations("sku-1")) == 2


@pytest.mark.asyncio
async def test_tracking_resumes_from_stored_history(settings, premium_product, make_observation):
    source = ScriptedObservationSource({("sku-1", "acme"): [70]})
    received = []

    async with PriceIntelligenceService(source, settings=settings) as service:
        await service.register_product(premium_product)
        await service.record_observations([make_observation(100, hours_ago=1)])
        service.add_alert_listener(received.append)

        await service.start_tracking("sku-1", ["acme"], 60)
        await wait_for(lambda: received)

    assert received[0].old_price == 100
    assert received[0].new_price == 70


@pytest.mark.asyncio
async def test_tracking_stats(settings, premium_product, thin_margin_product):
    async with PriceIntelligenceService(ScriptedObservationSource(), settings=settings) as service:
        await service.register_product(premium_product)
        await service.register_product(thin_margin_product)
        await service.start_tracking("sku-1", ["acme"], 60)
        await service.start_tracking("sku-2", ["acme", "globex"], 60)

        stats = await service.tracking_stats()

    assert stats.active_jobs == 2
    assert (await service.tracking_stats()).active_jobs == 0


@pytest.mark.asyncio
async def test_prune(settings, premium_product, make_observation, now):
    service = PriceIntelligenceService(ScriptedObservationSource(), settings=settings)
    await service.register_product(premium_product)
    await service.record_observations([
        make_observation(100, hours_ago=24 * 45),
        make_observation(95, hours_ago=1),
    ])

    assert await service.prune(now=now) == 1
    assert [o.price for o in await service.repository.list_observations("sku-1")] == [95]


# =============================================================================
# Portfolio
# =============================================================================

@pytest.mark.asyncio
async def test_portfolio_summary(settings, premium_product, thin_margin_product, history, make_observation):
    service = PriceIntelligenceService(ScriptedObservationSource(), settings=settings)
    await service.register_product(premium_product)
    await service.register_product(thin_margin_product)
    await service.register_product(Product(id="sku-3", cost=10, current_price=20, units_sold=50))

    await service.record_observations(history)
    await service.record_observations([
        make_observation(80, competitor="acme", product_id="sku-2", hours_ago=1),
        make_observation(80, competitor="globex", product_id="sku-2", hours_ago=1),
    ])

    summary = await service.get_portfolio_summary()

    assert summary.total_products == 3
    assert summary.total_current_revenue == pytest.approx(100 * 120 + 52 * 300 + 20 * 50)
    assert summary.total_projected_revenue == pytest.approx(96.25 * 120 + 59 * 300 + 20 * 50)
    assert [r.product_id for r in summary.top_opportunities] == ["sku-2"]
    assert summary.risk_flags == {
        "sku-1": [RiskReason.NEGATIVE_REVENUE_IMPACT],
        "sku-3": [RiskReason.LOW_CONFIDENCE],
    }

    subset = await service.get_portfolio_summary(["sku-2", "sku-2"], top_n=1)
    assert subset.total_products == 1


def test_package_exposes_service():
    from price_intel import get_service

    assert get_service() is PriceIntelligenceService
