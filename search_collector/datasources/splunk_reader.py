"""
Splunk reader.

Expands the configured query over its parameter lists and runs every
expanded query on a bounded worker pool. Results go onto the metric or
annotation queue depending on the collection mode.
"""

import logging
import queue
import threading
import time
from concurrent.futures import ALL_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional

from ..config.reader_config import Parameter, SplunkConfiguration
from ..core.exceptions import ConfigurationError
from ..utils.stats import RelayStatistics
from .base import CollectionState, DomainReader
from .parsers import AnnotationParser, MetricParser, SplunkParser
from .splunk_service import SplunkService
from .worker import POLL_TIME_SEC, QueryWorker

# Seconds workers get to wind down after being cancelled
SHUTDOWN_GRACE_SEC = 20.0

# Upper bound on each wait for worker completion
WAIT_SLICE_SEC = 1.0


class SplunkReader(DomainReader):
    """Collects metrics or annotations from Splunk search results."""

    datasource = 'SPLUNK'
    configuration_required = True

    def __init__(self, configuration: SplunkConfiguration,
                 service_factory: Optional[Callable[[], SplunkService]] = None,
                 statistics: Optional[RelayStatistics] = None,
                 poll_interval: float = POLL_TIME_SEC,
                 shutdown_grace: float = SHUTDOWN_GRACE_SEC):
        """
        Initialize the reader.

        Args:
            configuration: Validated reader configuration
            service_factory: Builds a logged-in service, defaults to SplunkService
            statistics: Optional sink for query outcome counts
            poll_interval: Seconds between job status checks
            shutdown_grace: Seconds to wait for cancelled workers

        Raises:
            ConfigurationError: If a required parameter is blank
        """
        super().__init__()
        self.logger = logging.getLogger(__name__)
        self.config = configuration
        self.statistics = statistics
        self.poll_interval = poll_interval
        self.shutdown_grace = shutdown_grace
        self.service_factory = service_factory or self._create_service
        self.summary: Dict[str, int] = {'succeeded': 0, 'failed': 0, 'abandoned': 0}

        required = [Parameter.HOST, Parameter.USERNAME, Parameter.PASSWORD, Parameter.QUERY]
        if self.annotation_mode:
            required.append(Parameter.ANNOTATION_TYPE)
        for param in required:
            if not self.config.resolve(param).strip():
                raise ConfigurationError(
                    f'Parameter, "{param.key}", cannot be blank. Please check the properties file.', context=param)

        # The mode not being collected never produces anything
        self.state = CollectionState(metrics_done=self.annotation_mode, annotations_done=not self.annotation_mode)

    @property
    def annotation_mode(self) -> bool:
        return self.config.annotation_collection

    def _create_service(self) -> SplunkService:
        return SplunkService(
            username=self.config.username,
            password=self.config.password,
            host=self.config.host,
            port=self.config.port,
            tls_validation=self.config.tls_validation,
            tls_ca=self.config.tls_ca,
        )

    def create_parser(self) -> SplunkParser:
        if self.annotation_mode:
            return AnnotationParser(self.config)
        return MetricParser(self.config)

    def create_workers(self, service: SplunkService, target: queue.Queue,
                       cancel_event: threading.Event) -> List[QueryWorker]:
        """Build one worker per expanded query."""
        parser = self.create_parser()
        return [
            QueryWorker(service, target, query, params, parser, self.config.timeout_sec,
                        cancel_event=cancel_event, poll_interval=self.poll_interval)
            for query, params in self.config.expand_queries().items()
        ]

    def invoke_collection(self, metric_queue: queue.Queue, annotation_queue: queue.Queue,
                          stop_event: Optional[threading.Event] = None) -> None:
        stop_event = stop_event or threading.Event()
        cancel_event = threading.Event()
        target = annotation_queue if self.annotation_mode else metric_queue
        mode = 'annotation' if self.annotation_mode else 'metric'

        service = None
        executor = None
        futures: List[Future] = []
        try:
            self.logger.info(f"Starting Splunk {mode} collection")
            service = self.service_factory()
            workers = self.create_workers(service, target, cancel_event)
            self.logger.info(f"Running {len(workers)} queries on {self.config.worker_count} workers")

            executor = ThreadPoolExecutor(max_workers=self.config.worker_count, thread_name_prefix='splunkreader')
            futures = [executor.submit(worker) for worker in workers]

            if not self._await_completion(futures, stop_event):
                cancel_event.set()
                for future in futures:
                    future.cancel()
                wait(futures, timeout=self.shutdown_grace)
        finally:
            if executor is not None:
                executor.shutdown(wait=False, cancel_futures=True)
            if service is not None:
                service.close()
            self._record_summary(futures)
            self.state.mark_done(metrics=not self.annotation_mode, annotations=self.annotation_mode)
            self.logger.info(f"Splunk {mode} collection finished")

    def _await_completion(self, futures: List[Future], stop_event: threading.Event) -> bool:
        """Wait for all workers. Returns False on timeout or stop request."""
        deadline = time.monotonic() + self.config.timeout_sec
        pending = set(futures)
        while pending:
            if stop_event.is_set():
                self.logger.warning("Stop requested, cancelling outstanding queries")
                return False
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self.logger.warning(f"Collection timed out after {self.config.timeout_sec}s, "
                                    f"cancelling {len(pending)} outstanding queries")
                return False
            _, pending = wait(pending, timeout=min(WAIT_SLICE_SEC, remaining), return_when=ALL_COMPLETED)
        return True

    def _record_summary(self, futures: List[Future]) -> None:
        succeeded = failed = abandoned = 0
        for future in futures:
            if not future.done() or future.cancelled():
                abandoned += 1
                continue
            error = future.exception()
            if error is not None:
                self.logger.error(f"Query worker raised unexpectedly: {error}")
                failed += 1
            elif future.result():
                succeeded += 1
            else:
                failed += 1

        self.summary = {'succeeded': succeeded, 'failed': failed, 'abandoned': abandoned}
        self.logger.info(f"Queries succeeded: {succeeded}, failed: {failed}, abandoned: {abandoned}")
        if self.statistics is not None:
            self.statistics.record_queries(succeeded, failed, abandoned)
