import pytest
from contextlib import ExitStack
from datetime import timedelta
from unittest.mock import patch

from price_intel.config.settings import Settings
from price_intel.models.schemas import Observation, Product, utc_now

# Every module that imports get_settings by name
SETTINGS_CONSUMERS = [
    "price_intel.config.settings",
    "price_intel.analyzers.market_intelligence",
    "price_intel.services.pricing_engine",
    "price_intel.services.portfolio",
    "price_intel.services.intelligence_service",
    "price_intel.scheduler.tracking",
    "price_intel.pipeline.orchestrator",
    "price_intel.sources.http",
    "price_intel.main",
]


@pytest.fixture
def settings():
    """Real settings tuned for fast tests; .env is ignored."""
    return Settings(
        _env_file=None,
        log_json=False,
        default_interval_minutes=0.01,
        fetch_timeout_seconds=0.2,
        fetch_max_attempts=2,
        fetch_retry_wait_seconds=0,
        max_consecutive_failures=3,
        observation_window_hours=168,
        trend_min_samples=5,
        minimum_margin=0.10,
        historical_margin=0.30,
    )


@pytest.fixture(autouse=True)
def patch_get_settings(settings):
    """Globally patch get_settings to return the test settings."""
    with ExitStack() as stack:
        for module in SETTINGS_CONSUMERS:
            stack.enter_context(patch(f"{module}.get_settings", return_value=settings))
        yield settings


@pytest.fixture
def now():
    return utc_now().replace(microsecond=0)


@pytest.fixture
def make_observation(now):
    """Factory for observations at an offset (in hours) before ``now``."""
    def _make(price, competitor="acme", product_id="sku-1", hours_ago=0.0, **kwargs):
        return Observation(
            product_id=product_id,
            competitor=competitor,
            price=price,
            timestamp=now - timedelta(hours=hours_ago),
            **kwargs,
        )
    return _make


@pytest.fixture
def premium_product():
    """50% margin product priced above a 92-98 market."""
    return Product(id="sku-1", cost=50, current_price=100, units_sold=120)


@pytest.fixture
def thin_margin_product():
    """Priced under cost * (1 + minimum margin)."""
    return Product(id="sku-2", cost=50, current_price=52, units_sold=300)


@pytest.fixture
def market_observations(make_observation):
    """Latest prices 92 / 95 / 98 from three competitors."""
    return [
        make_observation(92, competitor="acme", hours_ago=1),
        make_observation(95, competitor="globex", hours_ago=1),
        make_observation(98, competitor="initech", hours_ago=1),
    ]


@pytest.fixture
def falling_history(make_observation):
    """Three competitors each cutting price steadily over six days."""
    observations = []
    for competitor, start in (("acme", 104), ("globex", 107), ("initech", 110)):
        for day in range(6):
            observations.append(
                make_observation(
                    start - 2 * day,
                    competitor=competitor,
                    hours_ago=(5 - day) * 24 + 1,
                )
            )
    return observations
