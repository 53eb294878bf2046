"""Persistence contract and in-memory implementation."""

from price_intel.storage.repository import InMemoryRepository, IntelligenceRepository

__all__ = ["IntelligenceRepository", "InMemoryRepository"]
