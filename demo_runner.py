"""
Demo Runner Script for the Competitor Price Intelligence engine.

Tracks three products against a seeded simulated market:
- "sku-headphones": premium-priced, wide margin (expected: move toward market)
- "sku-kettle": priced near cost (expected: margin-floor-protection)
- "sku-lamp": no tracking at all (expected: insufficient-data, low confidence)

Prints live alerts while the scheduler runs, then each product's
intelligence and the portfolio summary. Reports are saved to
outputs/demo_reports/.
"""

import asyncio
import sys
from datetime import datetime
from pathlib import Path

from price_intel.config.settings import Settings
from price_intel.models.schemas import PriceAlert, Product
from price_intel.services.intelligence_service import PriceIntelligenceService
from price_intel.sources.memory import SimulatedObservationSource
from price_intel.utils.logger import get_logger, setup_logging
from price_intel.utils.retry import PriceIntelError

# Setup logging
setup_logging(level="WARNING", json_format=False)
logger = get_logger(__name__)


DEMO_PRODUCTS = [
    {
        "product": Product(id="sku-headphones", cost=50, current_price=100, units_sold=120),
        "competitors": ["amazon", "bestbuy", "walmart", "target"],
        "market_price": 95.0,
        "description": "Premium-priced headphones with a 50% margin",
    },
    {
        "product": Product(id="sku-kettle", cost=50, current_price=52, units_sold=300),
        "competitors": ["amazon", "walmart", "target"],
        "market_price": 80.0,
        "description": "Kettle priced just above cost",
    },
    {
        "product": Product(id="sku-lamp", cost=12, current_price=30, units_sold=40),
        "competitors": [],
        "market_price": 30.0,
        "description": "Lamp that is never tracked",
    },
]

# Output directory for demo reports
OUTPUT_DIR = Path("outputs/demo_reports")

TRACKING_SECONDS = 6
INTERVAL_MINUTES = 0.01  # 0.6s between ticks


def print_alert(alert: PriceAlert) -> None:
    print(
        f"    ! {alert.product_id:<15} {alert.competitor:<8} "
        f"{alert.old_price:8.2f} -> {alert.new_price:8.2f} "
        f"({alert.change_percent:+6.2f}%) {alert.severity}"
    )


async def run_demo() -> int:
    """
    Run the demo and return the number of products that failed.
    """
    print("\n" + "=" * 70)
    print("  Competitor Price Intelligence - Demo Runner")
    print("=" * 70)
    print(f"\n  Tracking {len(DEMO_PRODUCTS)} products for {TRACKING_SECONDS}s...")
    print(f"  Reports will be saved to: {OUTPUT_DIR.absolute()}\n")

    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

    settings = Settings(_env_file=None, fetch_timeout_seconds=2, log_json=False)
    source = SimulatedObservationSource(
        base_prices={d["product"].id: d["market_price"] for d in DEMO_PRODUCTS},
        seed=42,
        max_step=0.06,
        stockout_rate=0.05,
        failure_rate=0.05,
    )

    failed = 0
    async with PriceIntelligenceService(source, settings=settings) as service:
        service.add_alert_listener(print_alert)

        job_ids = []
        for demo in DEMO_PRODUCTS:
            await service.register_product(demo["product"])
            if demo["competitors"]:
                job_ids.append(
                    await service.start_tracking(
                        demo["product"].id, demo["competitors"], INTERVAL_MINUTES
                    )
                )

        await asyncio.sleep(TRACKING_SECONDS)

        for job_id in job_ids:
            job = await service.stop_tracking(job_id)
            print(
                f"\n  Job {job.id} ({job.product_id}): {job.tick_count} ticks, "
                f"{job.error_count} fetch errors, {job.skipped_ticks} skipped"
            )

        for i, demo in enumerate(DEMO_PRODUCTS, 1):
            product = demo["product"]
            print(f"\n{'=' * 70}")
            print(f"  [{i}/{len(DEMO_PRODUCTS)}] {product.id}: {demo['description']}")
            print("=" * 70)

            try:
                report = await service.get_current_intelligence(product.id)
            except PriceIntelError as e:
                failed += 1
                print(f"\n  ✗ ERROR: {type(e).__name__}: {e}")
                continue

            rec = report.recommendation
            print(f"    Data status:  {report.data_status}")
            print(f"    Observations: {len(report.observations)}  Alerts: {len(report.alerts)}")
            if report.position:
                print(
                    f"    Position:     {report.position.category} "
                    f"({report.position.percentile:.0f}th percentile)"
                )
            recommended = "-" if rec.recommended_price is None else f"{rec.recommended_price:.2f}"
            print(f"    Price:        {rec.current_price:.2f} -> {recommended}")
            print(f"    Reasoning:    {rec.reasoning} ({rec.confidence} confidence)")

            path = OUTPUT_DIR / f"{product.id}-{datetime.now():%Y%m%d%H%M%S}.json"
            path.write_text(report.to_json(), encoding="utf-8")
            print(f"    Report:       {path}")

        summary = await service.get_portfolio_summary()

    print("\n" + "=" * 70)
    print("  PORTFOLIO SUMMARY")
    print("=" * 70)
    print(f"\n  Current revenue:   {summary.total_current_revenue:,.2f}")
    print(f"  Projected revenue: {summary.total_projected_revenue:,.2f}")
    print(f"  Uplift:            {summary.revenue_uplift:+,.2f} ({summary.revenue_uplift_percent:+.2f}%)")
    print(f"  High confidence:   {summary.high_confidence_count}")
    print(f"  Opportunities:     {', '.join(r.product_id for r in summary.top_opportunities) or '-'}")
    for product_id, reasons in summary.risk_flags.items():
        print(f"  Risk:              {product_id} ({', '.join(reasons)})")
    print("=" * 70 + "\n")

    return failed


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(run_demo()))
    except KeyboardInterrupt:
        print("\n\n  Demo interrupted by user.")
        sys.exit(1)
    except Exception as e:
        print(f"\n  Fatal error: {e}")
        logger.exception("Demo runner failed")
        sys.exit(1)
