import pytest
from unittest.mock import patch
from pydantic import ValidationError
from price_intel.config.settings import Settings


def test_defaults():
    with patch.dict("os.environ", {}, clear=True):
        settings = Settings(_env_file=None)

    assert settings.default_interval_minutes == 15.0
    assert settings.minimum_margin == 0.10
    assert settings.observation_window_seconds == 168 * 3600
    assert settings.top_opportunities == 5
    assert settings.data_freshness_hours == 24.0
    assert (settings.min_data_quality, settings.low_data_quality, settings.high_data_quality) == (30, 50, 80)
    assert not settings.has_price_api()


def test_reads_environment():
    with patch.dict("os.environ", {
        "MINIMUM_MARGIN": "0.2",
        "FETCH_TIMEOUT_SECONDS": "5",
        "PSYCHOLOGICAL_PRICING": "true",
        "PRICE_API_BASE_URL": "https://prices.example.com/v1/",
        "PRICE_API_KEY": "secret-key",
    }, clear=True):
        settings = Settings(_env_file=None)

    assert settings.minimum_margin == 0.2
    assert settings.fetch_timeout_seconds == 5
    assert settings.psychological_pricing is True
    assert settings.price_api_base_url == "https://prices.example.com/v1"
    assert settings.price_api_key.get_secret_value() == "secret-key"
    assert "secret-key" not in repr(settings)
    assert settings.has_price_api()


def test_empty_base_url_is_unset():
    with patch.dict("os.environ", {"PRICE_API_BASE_URL": ""}, clear=True):
        assert Settings(_env_file=None).price_api_base_url is None


def test_invalid_base_url():
    with patch.dict("os.environ", {"PRICE_API_BASE_URL": "ftp://prices"}, clear=True):
        with pytest.raises(ValidationError):
            Settings(_env_file=None)


def test_invalid_percentile_bands():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, below_market_percentile=80, above_market_percentile=70)


def test_data_quality_thresholds_must_be_ordered():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, min_data_quality=60, low_data_quality=50)


def test_non_positive_interval_rejected():
    with patch.dict("os.environ", {"DEFAULT_INTERVAL_MINUTES": "0"}, clear=True):
        with pytest.raises(ValidationError):
            Settings(_env_file=None)
