"""
Base writer interface for the search collector.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, List, Sequence

from ..schema.models import Annotation, Metric

# Initialize logger
LOG = logging.getLogger(__name__)


class Writer(ABC):
    """
    Base class for all writers.

    A writer is the downstream side of the relay: it accepts batches of
    metrics and annotations and submits them to the metrics service.
    """

    def login(self) -> None:
        """Open the downstream session. Default implementation does nothing."""
        pass

    def logout(self) -> None:
        """End the downstream session. Default implementation does nothing."""
        pass

    @abstractmethod
    def put_metrics(self, metrics: List[Metric]) -> None:
        """
        Submit a batch of metrics.

        Args:
            metrics: Non-empty list of metrics

        Raises:
            ValueError: If the batch is empty
            RelayForwardError: If the service rejects the batch
        """
        pass

    @abstractmethod
    def put_annotations(self, annotations: List[Annotation]) -> None:
        """
        Submit a batch of annotations.

        Args:
            annotations: Non-empty list of annotations

        Raises:
            ValueError: If the batch is empty
            RelayForwardError: If the service rejects the batch
        """
        pass

    @abstractmethod
    def query_metrics(self, expression: str) -> Any:
        """
        Run a metric query expression against the service.

        Raises:
            ValueError: If the expression is empty
        """
        pass

    def close(self) -> None:
        """
        Optional method to close the writer and clean up resources.
        Default implementation does nothing - override in subclasses that need cleanup.
        """
        pass

    @staticmethod
    def _require_batch(batch: Sequence, kind: str) -> None:
        if not batch:
            raise ValueError(f"{kind} cannot be null or empty.")
