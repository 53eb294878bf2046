"""
Competitor Price Intelligence - CLI Entry Point.
CLI using Click and Rich.
"""

import asyncio
import json
import logging
import sys
from datetime import datetime
from functools import wraps
from pathlib import Path
from typing import Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from price_intel import __version__
from price_intel.config.settings import get_settings
from price_intel.models.schemas import (
    IntelligenceReport,
    Observation,
    PortfolioSummary,
    PriceAlert,
    Product,
    Severity,
)
from price_intel.services.intelligence_service import PriceIntelligenceService
from price_intel.sources.memory import ScriptedObservationSource, SimulatedObservationSource
from price_intel.utils.logger import setup_logging
from price_intel.utils.retry import PriceIntelError

# Initialize Rich Consoles
console = Console()
err_console = Console(stderr=True)

SEVERITY_STYLES = {
    Severity.LOW: "dim",
    Severity.MEDIUM: "yellow",
    Severity.HIGH: "bold yellow",
    Severity.CRITICAL: "bold red",
}

# =============================================================================
# Helper Functions
# =============================================================================

def async_command(f):
    """Decorator to run async click commands."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


def setup_logger(verbose: bool):
    """Configure logging based on verbosity."""
    level = "DEBUG" if verbose else "WARNING"
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
        force=True,
    )
    setup_logging(level=level, json_format=False, use_stdlib=True)
    # Silence third-party libs
    logging.getLogger("httpx").setLevel(logging.WARNING)


def load_catalog(path: Path) -> tuple[list[Product], list[Observation]]:
    """
    Load products and observations from a JSON catalog file.

    Expected shape (camelCase keys)::

        {"products": [{"id": "sku-1", "cost": 50, "currentPrice": 100, "unitsSold": 120}],
         "observations": [{"productId": "sku-1", "competitor": "acme", "price": 92,
                           "timestamp": "2024-05-01T12:00:00Z"}]}
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict) or "products" not in data:
        raise ValueError("Catalog must be a JSON object with a 'products' list")

    products = [Product.model_validate(p) for p in data["products"]]
    observations = [Observation.model_validate(o) for o in data.get("observations", [])]
    return products, observations


def _fmt_money(value: Optional[float]) -> str:
    return "-" if value is None else f"{value:,.2f}"


def _fmt_pct(value: Optional[float], fraction: bool = False) -> str:
    if value is None:
        return "-"
    return f"{value * 100:+.1f}%" if fraction else f"{value:+.1f}%"


def render_summary(summary: PortfolioSummary, reports: list[IntelligenceReport]) -> None:
    table = Table(title="Pricing Recommendations")
    table.add_column("Product", style="cyan")
    table.add_column("Current", justify="right")
    table.add_column("Market", justify="right")
    table.add_column("Recommended", justify="right")
    table.add_column("Change", justify="right")
    table.add_column("Revenue Impact", justify="right")
    table.add_column("Confidence")
    table.add_column("Reasoning", style="dim")

    for report in reports:
        rec = report.recommendation
        table.add_row(
            rec.product_id,
            _fmt_money(rec.current_price),
            _fmt_money(rec.market_reference_price),
            _fmt_money(rec.recommended_price),
            _fmt_pct(rec.price_change_percent),
            _fmt_money(rec.revenue_impact),
            rec.confidence,
            rec.reasoning,
        )
    console.print(table)

    overview = Table(title="Portfolio Summary", show_header=False)
    overview.add_row("Products", str(summary.total_products))
    overview.add_row("Current Revenue", _fmt_money(summary.total_current_revenue))
    overview.add_row("Projected Revenue", _fmt_money(summary.total_projected_revenue))
    overview.add_row(
        "Revenue Uplift",
        f"{_fmt_money(summary.revenue_uplift)} ({_fmt_pct(summary.revenue_uplift_percent)})",
    )
    overview.add_row("Avg Margin Change", _fmt_pct(summary.average_margin_improvement, fraction=True))
    overview.add_row("High Confidence", str(summary.high_confidence_count))
    overview.add_row(
        "Top Opportunities",
        ", ".join(r.product_id for r in summary.top_opportunities) or "-",
    )
    overview.add_row(
        "At Risk",
        ", ".join(
            f"{pid} ({', '.join(reasons)})" for pid, reasons in summary.risk_flags.items()
        ) or "-",
    )
    console.print(overview)


def render_report(report: IntelligenceReport) -> None:
    rec = report.recommendation
    lines = [
        f"Data status: [bold]{report.data_status}[/bold]",
        f"Observations: {len(report.observations)}  Alerts: {len(report.alerts)}",
    ]
    for trend in report.trends:
        lines.append(
            f"Trend ({trend.type}): {trend.direction or '-'} "
            f"strength={'-' if trend.strength is None else f'{trend.strength:.2f}'} "
            f"confidence={trend.confidence_level}"
        )
    if report.position:
        lines.append(
            f"Position: {report.position.category} "
            f"({report.position.percentile:.0f}th percentile of {report.position.competitor_count})"
        )
    lines.append(
        f"Recommendation: {_fmt_money(rec.current_price)} -> {_fmt_money(rec.recommended_price)} "
        f"[{rec.reasoning}, {rec.confidence} confidence]"
    )
    lines.append(f"Data quality: {rec.data_quality_score:.0f}/100")
    for warning in rec.data_quality_warnings:
        lines.append(f"  ! {warning}")
    for insight in report.insights:
        lines.append(f"  - {insight.type}: {insight.title}")
    console.print(Panel("\n".join(lines), title=f"Intelligence: {report.product_id}"))


def print_alert(alert: PriceAlert) -> None:
    style = SEVERITY_STYLES[Severity(alert.severity)]
    console.print(
        f"[{style}]{alert.severity.upper():8}[/{style}] {alert.competitor}: "
        f"{alert.old_price:.2f} -> {alert.new_price:.2f} ({alert.change_percent:+.1f}%)"
    )

# =============================================================================
# CLI Group
# =============================================================================

@click.group()
@click.version_option(version=__version__)
def cli():
    """Competitor Price Intelligence"""
    pass

# =============================================================================
# Commands
# =============================================================================

@cli.command()
@click.argument("catalog", type=click.Path(exists=True, dir_okay=False))
@click.option("--top", "top_n", type=int, default=None, help="Number of top opportunities")
@click.option("--as-of", "as_of", default=None, help="ISO timestamp ending the window (default: newest observation)")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of tables")
@click.option("--verbose", is_flag=True, help="Detailed logging")
@async_command
async def analyze(catalog: str, top_n: Optional[int], as_of: Optional[str], as_json: bool, verbose: bool):
    """
    Analyze a catalog of products and competitor observations.

    CATALOG: JSON file with "products" and "observations".
    """
    setup_logger(verbose)

    try:
        products, observations = load_catalog(Path(catalog))
        window_end = datetime.fromisoformat(as_of) if as_of else None
    except (ValueError, KeyError) as e:
        err_console.print(f"[bold red]Invalid catalog:[/bold red] {e}")
        sys.exit(1)

    if window_end is None and observations:
        window_end = max(o.timestamp for o in observations)

    settings = get_settings()
    try:
        async with PriceIntelligenceService(ScriptedObservationSource(), settings=settings) as service:
            for product in products:
                await service.register_product(product)
            await service.record_observations(observations)

            reports = await asyncio.gather(
                *(service.get_current_intelligence(p.id, as_of=window_end) for p in products)
            )
            summary = service.aggregator.aggregate(
                [r.recommendation for r in reports], top_n=top_n
            )
    except PriceIntelError as e:
        err_console.print(f"[bold red]Error:[/bold red] {e}")
        if verbose:
            err_console.print_exception()
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(
            {
                "summary": summary.to_dict(mode="json"),
                "recommendations": [r.recommendation.to_dict(mode="json") for r in reports],
            },
            indent=2,
        ))
        return

    render_summary(summary, list(reports))


@cli.command()
@click.argument("product_id")
@click.option("--cost", type=float, required=True, help="Unit cost")
@click.option("--price", type=float, required=True, help="Current selling price")
@click.option("--competitor", "competitors", multiple=True, required=True, help="Competitor to track (repeatable)")
@click.option("--units-sold", type=float, default=100, show_default=True, help="Units sold in the trailing period")
@click.option("--currency", default="USD", show_default=True)
@click.option("--interval-minutes", type=float, default=0.05, show_default=True, help="Sampling interval")
@click.option("--duration-seconds", type=float, default=10, show_default=True, help="How long to track")
@click.option("--seed", type=int, default=None, help="Seed for the simulated source")
@click.option("--verbose", is_flag=True, help="Detailed logging")
@async_command
async def track(
    product_id: str,
    cost: float,
    price: float,
    competitors: tuple[str, ...],
    units_sold: float,
    currency: str,
    interval_minutes: float,
    duration_seconds: float,
    seed: Optional[int],
    verbose: bool,
):
    """
    Track simulated competitor prices for one product.

    PRODUCT_ID: Identifier of the product to track.
    """
    setup_logger(verbose)

    try:
        product = Product(
            id=product_id,
            cost=cost,
            current_price=price,
            units_sold=units_sold,
            currency=currency,
        )
    except ValidationError as e:
        err_console.print(f"[bold red]Invalid product:[/bold red] {e}")
        sys.exit(1)

    source = SimulatedObservationSource(
        base_prices={product_id: price},
        seed=seed,
        currency=product.currency,
    )
    settings = get_settings()

    console.print(Panel.fit(
        f"[bold blue]Tracking {product_id}[/bold blue]\n"
        f"Competitors: [cyan]{', '.join(competitors)}[/cyan]\n"
        f"Interval: {interval_minutes} min, duration: {duration_seconds}s"
    ))

    try:
        async with PriceIntelligenceService(source, settings=settings) as service:
            await service.register_product(product)
            service.add_alert_listener(print_alert)

            job_id = await service.start_tracking(product_id, competitors, interval_minutes)
            await asyncio.sleep(duration_seconds)
            job = await service.stop_tracking(job_id)

            report = await service.get_current_intelligence(product_id)
    except PriceIntelError as e:
        err_console.print(f"[bold red]Error:[/bold red] {e}")
        if verbose:
            err_console.print_exception()
        sys.exit(1)

    table = Table(title="Tracking Job", show_header=False)
    table.add_row("Job ID", job.id)
    table.add_row("Ticks", str(job.tick_count))
    table.add_row("Skipped Ticks", str(job.skipped_ticks))
    table.add_row("Fetch Errors", str(job.error_count))
    console.print(table)
    render_report(report)


@cli.command()
def show_config():
    """Print the effective configuration."""
    try:
        settings = get_settings()
    except ValidationError as e:
        err_console.print(f"[bold red]Configuration Error:[/bold red] {e}")
        sys.exit(1)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Setting")
    table.add_column("Value")

    for name, field in type(settings).model_fields.items():
        value = getattr(settings, name)
        table.add_row(field.alias or name, "-" if value is None else str(value))

    console.print(table)


if __name__ == "__main__":
    cli()
