"""Pipeline module for the price intelligence engine."""

from price_intel.pipeline.orchestrator import (
    IntelligencePipeline,
    IntelligenceStateDict,
    track_timing,
)

__all__ = [
    "IntelligencePipeline",
    "IntelligenceStateDict",
    "track_timing",
]
