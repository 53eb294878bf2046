"""
Observation sources.

Sources:
    - ObservationSource: abstract contract every source implements
    - ScriptedObservationSource: deterministic queue for tests and replays
    - SimulatedObservationSource: seeded random walk for demos
    - HttpObservationSource: JSON price API over httpx
"""

from price_intel.sources.base import ObservationSource
from price_intel.sources.http import HttpObservationSource, RateLimiter
from price_intel.sources.memory import ScriptedObservationSource, SimulatedObservationSource

__all__ = [
    "ObservationSource",
    "ScriptedObservationSource",
    "SimulatedObservationSource",
    "HttpObservationSource",
    "RateLimiter",
]
