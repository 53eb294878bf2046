"""
Integration tests for the CLI using Click's CliRunner.
"""

import json

import pytest
from click.testing import CliRunner

from price_intel import __version__
from price_intel.main import SEVERITY_STYLES, cli, load_catalog, print_alert
from price_intel.models.schemas import PriceAlert, Severity

# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def catalog(tmp_path):
    data = {
        "products": [
            {"id": "sku-1", "cost": 50, "currentPrice": 100, "unitsSold": 120},
            {"id": "sku-2", "cost": 50, "currentPrice": 52, "unitsSold": 300},
            {"id": "sku-3", "cost": 10, "currentPrice": 20, "unitsSold": 50},
        ],
        "observations": [
            {"productId": "sku-1", "competitor": "acme", "price": 100, "timestamp": "2024-05-01T09:00:00Z"},
            {"productId": "sku-1", "competitor": "acme", "price": 92, "timestamp": "2024-05-01T11:00:00Z"},
            {"productId": "sku-1", "competitor": "globex", "price": 95, "timestamp": "2024-05-01T11:00:00Z"},
            {"productId": "sku-1", "competitor": "initech", "price": 98, "timestamp": "2024-05-01T11:00:00Z"},
            {"productId": "sku-2", "competitor": "acme", "price": 80, "timestamp": "2024-05-01T12:00:00Z"},
            {"productId": "sku-2", "competitor": "globex", "price": 80, "timestamp": "2024-05-01T12:00:00Z"},
        ],
    }
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps(data))
    return path


# =============================================================================
# Tests
# =============================================================================

def test_version(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_load_catalog(catalog):
    products, observations = load_catalog(catalog)

    assert [p.id for p in products] == ["sku-1", "sku-2", "sku-3"]
    assert products[0].current_price == 100
    assert len(observations) == 6
    assert observations[0].timestamp.tzinfo is not None


def test_analyze_json(runner, catalog):
    result = runner.invoke(cli, ["analyze", str(catalog), "--json"])

    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)

    recommendations = {r["productId"]: r for r in data["recommendations"]}
    assert recommendations["sku-1"]["reasoning"] == "above-market-headroom"
    assert recommendations["sku-1"]["recommendedPrice"] == pytest.approx(96.25)
    assert recommendations["sku-2"]["reasoning"] == "margin-floor-protection"
    assert recommendations["sku-2"]["recommendedPrice"] >= 55
    assert recommendations["sku-3"]["reasoning"] == "insufficient-data"
    assert recommendations["sku-3"]["recommendedPrice"] is None

    summary = data["summary"]
    assert summary["totalProducts"] == 3
    assert [r["productId"] for r in summary["topOpportunities"]] == ["sku-2"]
    assert set(summary["riskFlags"]) == {"sku-1", "sku-3"}


def test_analyze_table(runner, catalog):
    result = runner.invoke(cli, ["analyze", str(catalog), "--top", "1"])

    assert result.exit_code == 0, result.output
    assert "Pricing Recommendations" in result.output
    assert "Portfolio Summary" in result.output


def test_analyze_invalid_catalog(runner, tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("[]")

    result = runner.invoke(cli, ["analyze", str(path)])

    assert result.exit_code == 1


def test_analyze_invalid_product(runner, tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"products": [{"id": "sku-1", "cost": 5, "currentPrice": 0}]}))

    result = runner.invoke(cli, ["analyze", str(path)])

    assert result.exit_code == 1


def test_track(runner):
    result = runner.invoke(cli, [
        "track", "sku-1",
        "--cost", "50",
        "--price", "100",
        "--competitor", "acme",
        "--competitor", "globex",
        "--interval-minutes", "0.001",
        "--duration-seconds", "0.3",
        "--seed", "1",
    ])

    assert result.exit_code == 0, result.output
    assert "Tracking Job" in result.output
    assert "Intelligence: sku-1" in result.output


def test_track_invalid_product(runner):
    result = runner.invoke(cli, [
        "track", "sku-1", "--cost", "50", "--price", "-1", "--competitor", "acme",
    ])
    assert result.exit_code == 1


def test_show_config(runner):
    result = runner.invoke(cli, ["show-config"])

    assert result.exit_code == 0
    assert "MINIMUM_MARGIN" in result.output


def test_every_severity_has_a_style():
    assert set(SEVERITY_STYLES) == set(Severity)


@pytest.mark.parametrize("severity", list(Severity))
def test_print_alert(severity, capsys):
    alert = PriceAlert(
        product_id="sku-1",
        competitor="acme",
        old_price=100,
        new_price=80,
        change_percent=-20.0,
        severity=severity,
    )
    print_alert(alert)

    out = capsys.readouterr().out
    assert severity.value.upper() in out
    assert "acme" in out
