"""
Utility helpers shared by the collector.
"""

from .stats import RelayStatistics

__all__ = ['RelayStatistics']
