"""Synthetic reader used to exercise the relay without a source system."""

import logging
import queue
import random
import threading
import time
from typing import Optional

from ..schema.models import Metric
from .base import CollectionState, DomainReader

METRIC_COUNT = 10
DATAPOINT_COUNT = 10
DATAPOINT_SPACING_MS = 60 * 1000

# Seconds between generated metrics
EMIT_INTERVAL_SEC = 0.25


def create_metric(index: int, now_ms: int) -> Metric:
    """Build one metric with a minute-spaced series ending now."""
    datapoints = {
        now_ms - (DATAPOINT_COUNT - 1 - i) * DATAPOINT_SPACING_MS: str(random.randint(0, 100))
        for i in range(DATAPOINT_COUNT)
    }
    return Metric('unittest', f"metric{index}", tags={'host': 'localhost'}, datapoints=datapoints)


class UnitTestReader(DomainReader):
    """Produces a fixed number of random metrics and no annotations."""

    datasource = 'UNITTEST'

    def __init__(self, metric_count: int = METRIC_COUNT, interval: float = EMIT_INTERVAL_SEC):
        super().__init__()
        self.logger = logging.getLogger(__name__)
        self.metric_count = metric_count
        self.interval = interval
        self.state = CollectionState(annotations_done=True)

    def invoke_collection(self, metric_queue: queue.Queue, annotation_queue: queue.Queue,
                          stop_event: Optional[threading.Event] = None) -> None:
        stop_event = stop_event or threading.Event()
        try:
            for index in range(self.metric_count):
                metric_queue.put(create_metric(index, int(time.time() * 1000)))
                self.logger.debug(f"Queued synthetic metric{index}")
                if stop_event.wait(self.interval):
                    self.logger.info("Stop requested, ending synthetic collection")
                    break
        finally:
            self.state.mark_done(metrics=True)
