"""Collects metrics and annotations from search results and relays them to Argus."""

__version__ = '1.0.0'
