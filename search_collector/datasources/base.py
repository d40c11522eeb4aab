"""Base DomainReader interface and shared collection state."""

import queue
import threading
from abc import ABC, abstractmethod
from typing import Optional


class CollectionState:
    """Completion flags for one collection run.

    Flags are backed by events so the relay thread can read them while the
    collection thread sets them.
    """

    def __init__(self, metrics_done: bool = False, annotations_done: bool = False):
        self._metrics_done = threading.Event()
        self._annotations_done = threading.Event()
        self.mark_done(metrics=metrics_done, annotations=annotations_done)

    @property
    def metrics_done(self) -> bool:
        return self._metrics_done.is_set()

    @property
    def annotations_done(self) -> bool:
        return self._annotations_done.is_set()

    def mark_done(self, metrics: bool = False, annotations: bool = False) -> None:
        if metrics:
            self._metrics_done.set()
        if annotations:
            self._annotations_done.set()


class DomainReader(ABC):
    """Abstract base class for all readers.

    A reader pulls time series data from a source system and pushes metrics
    and annotations onto the queues handed to invoke_collection(). The relay
    drains those queues until both done flags are set.
    """

    # Descriptive name of the source system
    datasource: str = ''

    # Whether the reader needs a configuration file
    configuration_required: bool = False

    def __init__(self):
        self.state = CollectionState()

    def is_metric_collection_done(self) -> bool:
        """True once every metric the reader will produce has been queued."""
        return self.state.metrics_done

    def is_annotation_collection_done(self) -> bool:
        """True once every annotation the reader will produce has been queued."""
        return self.state.annotations_done

    @abstractmethod
    def invoke_collection(self, metric_queue: queue.Queue, annotation_queue: queue.Queue,
                          stop_event: Optional[threading.Event] = None) -> None:
        """
        Run the collection, blocking until it finishes or is stopped.

        Args:
            metric_queue: Queue receiving collected metrics
            annotation_queue: Queue receiving collected annotations
            stop_event: Set by the caller to request an early stop
        """
        pass
