"""Configuration module for the price intelligence engine."""

from price_intel.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
