"""Tracking scheduler and timing primitives."""

from price_intel.scheduler.ticker import CancellationToken, Ticker
from price_intel.scheduler.tracking import TickHandler, TickOutcome, TrackingScheduler

__all__ = [
    "TrackingScheduler",
    "TickHandler",
    "TickOutcome",
    "Ticker",
    "CancellationToken",
]
