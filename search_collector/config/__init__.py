"""
Configuration loading for search collector readers.
"""

from .properties import RawConfig, load_properties, load_reader_properties, parse_overrides, parse_properties
from .reader_config import Parameter, SplunkConfiguration, expand_queries, extract_mapping

__all__ = ['RawConfig', 'load_properties', 'load_reader_properties', 'parse_overrides', 'parse_properties',
           'Parameter', 'SplunkConfiguration', 'expand_queries', 'extract_mapping']
