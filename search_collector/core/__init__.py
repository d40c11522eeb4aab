"""Core collector package initialization."""

from .collector import Collector
from .config import CollectorConfig
from .exceptions import (CollectorError, ConfigurationError, ParseError, RelayForwardError,
                         RemoteQueryError)

__all__ = ['Collector', 'CollectorConfig', 'CollectorError', 'ConfigurationError', 'ParseError',
           'RelayForwardError', 'RemoteQueryError']
