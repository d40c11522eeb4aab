"""
Writer factory for the search collector.
"""

import logging

from .argus_writer import ArgusWriter
from .base import Writer
from .preview_writer import PreviewWriter

# Initialize logger
LOG = logging.getLogger(__name__)


class WriterFactory:
    """
    Factory for creating writer instances based on configuration.
    """

    @staticmethod
    def create_writer_from_config(config) -> Writer:
        """
        Create a writer based on a CollectorConfig object.

        Args:
            config: CollectorConfig instance with the preview flag and Argus settings

        Returns:
            PreviewWriter in preview mode, otherwise ArgusWriter
        """
        if config.preview:
            LOG.info("Preview mode: results are printed and not submitted")
            return PreviewWriter()

        LOG.info(f"Creating Argus writer with endpoint: {config.argus_endpoint}")
        return ArgusWriter(config.argus_endpoint, config.argus_username, config.argus_password)
