"""Readers pulling time series data from source systems."""

from .base import CollectionState, DomainReader
from .factory import READERS, ReaderFactory, available_readers
from .parsers import AnnotationParser, MetricParser, SplunkParser
from .splunk_reader import SplunkReader
from .splunk_service import RowReader, SplunkService
from .unittest_reader import UnitTestReader
from .worker import QueryWorker

__all__ = ['CollectionState', 'DomainReader', 'READERS', 'ReaderFactory', 'available_readers',
           'AnnotationParser', 'MetricParser', 'SplunkParser', 'SplunkReader', 'RowReader',
           'SplunkService', 'UnitTestReader', 'QueryWorker']
