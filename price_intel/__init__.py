"""
Competitor Price Intelligence.

Tracks competitor prices for a merchant catalog and turns raw observations
into price alerts, market trends and ranked pricing recommendations.
"""

__version__ = "1.0.0"
__author__ = "Price Intelligence Team"

# Lazy imports to avoid circular dependencies
def get_service():
    """Get the PriceIntelligenceService class (lazy import)."""
    from price_intel.services.intelligence_service import PriceIntelligenceService
    return PriceIntelligenceService

__all__ = ["get_service", "__version__"]
