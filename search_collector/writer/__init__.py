"""Writer module for the search collector.

Provides writer implementations for the metrics service and preview output.
"""

from .base import Writer
from .factory import WriterFactory
from .argus_writer import ArgusWriter
from .preview_writer import PreviewWriter

__all__ = ['Writer', 'WriterFactory', 'ArgusWriter', 'PreviewWriter']
