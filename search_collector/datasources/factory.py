"""
Reader factory for the search collector.
"""

import logging
from typing import Dict, List, Optional, Type

from ..config.properties import load_reader_properties
from ..config.reader_config import SplunkConfiguration
from ..core.exceptions import ConfigurationError
from ..utils.stats import RelayStatistics
from .base import DomainReader
from .splunk_reader import SplunkReader
from .unittest_reader import UnitTestReader

# Initialize logger
LOG = logging.getLogger(__name__)

READERS: Dict[str, Type[DomainReader]] = {
    'SPLUNKNATIVE': SplunkReader,
    'UNITTEST': UnitTestReader,
}

# Internal readers left out of the usage text
HIDDEN_READERS = ('UNITTEST',)


def available_readers() -> List[str]:
    return [name for name in READERS if name not in HIDDEN_READERS]


class ReaderFactory:
    """
    Factory for creating reader instances based on configuration.
    """

    @staticmethod
    def create_reader(config, statistics: Optional[RelayStatistics] = None) -> DomainReader:
        """
        Create the reader selected by a CollectorConfig.

        Readers needing configuration get their property bag loaded from the
        configured files and overrides.

        Args:
            config: CollectorConfig instance
            statistics: Optional statistics sink passed to readers that report

        Returns:
            Reader instance

        Raises:
            ConfigurationError: If the type is unknown or its configuration is invalid
        """
        reader_type = config.reader_type.upper()
        reader_class = READERS.get(reader_type)
        if reader_class is None:
            raise ConfigurationError(
                f"Unknown reader type: {config.reader_type}. Available types: {', '.join(available_readers())}",
                context=config.reader_type)

        if reader_class is SplunkReader:
            props = load_reader_properties(reader_type, config.config_path,
                                           config.override_config_path, config.overrides)
            LOG.info(f"Creating {reader_type} reader")
            return SplunkReader(SplunkConfiguration.from_properties(props), statistics=statistics)

        LOG.info(f"Creating {reader_type} reader")
        return reader_class()
