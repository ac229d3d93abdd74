"""Concrete sensor collectors shipped with the agent."""

from .random_number import RandomNumberCollector
from .system_stats import SystemStatsCollector

__all__ = ["RandomNumberCollector", "SystemStatsCollector"]
