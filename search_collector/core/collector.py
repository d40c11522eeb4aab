"""Relay orchestration.

Runs a reader on a background thread and forwards whatever it queues to a
writer in bounded chunks until the reader is done or the deadline passes.
"""

import itertools
import logging
import queue
import threading
import time
from typing import Callable, List, Optional

from ..utils.stats import RelayStatistics
from .exceptions import CollectorError

# Seconds between queue drains
POLL_INTERVAL_SEC = 0.5

# Maximum entities forwarded per request
CHUNK_SIZE = 1000

# Seconds to wait for the reader thread after the relay stops
JOIN_TIMEOUT_SEC = 14400

_INVOKER_IDS = itertools.count(1)


def drain(source: queue.Queue, chunk: List, max_items: int) -> int:
    """Move up to max_items from a queue into a list without blocking."""
    moved = 0
    while moved < max_items:
        try:
            chunk.append(source.get_nowait())
        except queue.Empty:
            break
        moved += 1
    return moved


class Collector:
    """Relays reader output to a writer within an overall deadline.

    The reader runs on a thread named ``collectclient-invoker-N``. The calling
    thread drains both queues every poll interval and forwards chunks of at
    most chunk_size entities. The writer is always closed on exit.
    """

    def __init__(self, reader, writer, timeout_sec: float = 3600,
                 poll_interval: float = POLL_INTERVAL_SEC, chunk_size: int = CHUNK_SIZE,
                 join_timeout: float = JOIN_TIMEOUT_SEC, statistics: Optional[RelayStatistics] = None):
        """Initialize the relay.

        Args:
            reader: DomainReader producing metrics and annotations
            writer: Writer receiving the chunks
            timeout_sec: Seconds the whole run may take
            poll_interval: Seconds between queue drains
            chunk_size: Maximum entities per forwarded batch
            join_timeout: Seconds to wait for the reader thread on exit
            statistics: Optional statistics sink
        """
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self.reader = reader
        self.writer = writer
        self.timeout_sec = timeout_sec
        self.poll_interval = poll_interval
        self.chunk_size = chunk_size
        self.join_timeout = join_timeout
        self.statistics = statistics
        self.logger = logging.getLogger(__name__)

        self._stop_event = threading.Event()
        self._reader_error: Optional[BaseException] = None

    def stop(self) -> None:
        """Ask a running invoke() to stop. Queued entities are still flushed."""
        self._stop_event.set()

    def invoke(self, metric_queue: Optional[queue.Queue] = None,
               annotation_queue: Optional[queue.Queue] = None) -> None:
        """Run the reader and relay its output until done.

        Args:
            metric_queue: Queue the reader fills with metrics, created if None
            annotation_queue: Queue the reader fills with annotations, created if None

        Raises:
            RelayForwardError: If the writer rejects a batch
            CollectorError: If the reader failed
        """
        metric_queue = queue.Queue() if metric_queue is None else metric_queue
        annotation_queue = queue.Queue() if annotation_queue is None else annotation_queue

        invoker = threading.Thread(
            target=self._run_reader,
            args=(metric_queue, annotation_queue),
            name=f"collectclient-invoker-{next(_INVOKER_IDS)}",
            daemon=True,
        )
        deadline = time.monotonic() + self.timeout_sec

        try:
            self.writer.login()
            self.logger.info(f"Invoking reader: {self.reader.datasource}")
            invoker.start()

            try:
                interrupted = self._relay(metric_queue, annotation_queue, deadline)
            except KeyboardInterrupt:
                self.logger.info("Execution was interrupted.")
                interrupted = True
            finally:
                self._stop_event.set()
                if invoker.is_alive():
                    invoker.join(self.join_timeout)
                    if invoker.is_alive():
                        self.logger.warning(f"Reader thread {invoker.name} did not finish in {self.join_timeout}s")

            if interrupted:
                self._flush(metric_queue, annotation_queue)
        finally:
            self.writer.close()
            self.logger.info("Finished")

        if self._reader_error is not None:
            if isinstance(self._reader_error, CollectorError):
                raise self._reader_error
            raise CollectorError(f"Reader failed: {self._reader_error}", context=self.reader.datasource) \
                from self._reader_error

    def _run_reader(self, metric_queue: queue.Queue, annotation_queue: queue.Queue) -> None:
        try:
            self.reader.invoke_collection(metric_queue, annotation_queue, self._stop_event)
        except Exception as e:
            # Surfaced to the caller of invoke() once the relay has cleaned up
            self.logger.error(f"Reader {self.reader.datasource} failed: {e}")
            self._reader_error = e
            # The reader may never set its done flags, so end the relay now
            self._stop_event.set()

    def _relay(self, metric_queue: queue.Queue, annotation_queue: queue.Queue, deadline: float) -> bool:
        """Forward chunks until done. Returns True if stopped early."""
        metric_chunk: List = []
        annotation_chunk: List = []

        while time.monotonic() < deadline:
            # Done flags are read before emptiness, so nothing queued before done is missed
            metrics_done = self.reader.is_metric_collection_done() and metric_queue.empty()
            annotations_done = self.reader.is_annotation_collection_done() and annotation_queue.empty()
            if metrics_done and annotations_done:
                self.logger.info("Reader is done and all queued entities were forwarded")
                return False
            if self._stop_event.is_set():
                return True

            self._forward(metric_queue, metric_chunk, self.writer.put_metrics, 'metric')
            self._forward(annotation_queue, annotation_chunk, self.writer.put_annotations, 'annotation')

            if self._stop_event.wait(self.poll_interval):
                return True

        self.logger.warning(f"Deadline of {self.timeout_sec}s reached, stopping the relay")
        return False

    def _forward(self, source: queue.Queue, chunk: List, send: Callable[[List], None], kind: str) -> None:
        drain(source, chunk, self.chunk_size)
        if not chunk:
            return
        try:
            send(list(chunk))
            self.logger.debug(f"Forwarded {len(chunk)} {kind} entities")
            if self.statistics is not None:
                self.statistics.record_batch(kind, len(chunk))
        except CollectorError:
            if self.statistics is not None:
                self.statistics.record_failure(kind)
            raise
        finally:
            chunk.clear()

    def _flush(self, metric_queue: queue.Queue, annotation_queue: queue.Queue) -> None:
        """Forward everything still queued."""
        metric_chunk: List = []
        annotation_chunk: List = []
        while not metric_queue.empty() or not annotation_queue.empty():
            self._forward(metric_queue, metric_chunk, self.writer.put_metrics, 'metric')
            self._forward(annotation_queue, annotation_chunk, self.writer.put_annotations, 'annotation')
        self.logger.info("Flushed queued entities after interruption")
