"""One expanded query, run end to end on a worker thread."""

import logging
import queue
import threading
from enum import Enum
from typing import List, Optional, Sequence

import requests

from ..core.exceptions import ParseError, RemoteQueryError
from .parsers import SplunkParser
from .splunk_service import RowReader, SplunkService

LOG = logging.getLogger(__name__)

# Seconds between job status checks
POLL_TIME_SEC = 30.0


class QueryState(Enum):
    PENDING = 'pending'
    SUBMITTED = 'submitted'
    TERMINATED = 'terminated'
    READY = 'ready'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


class QueryWorker:
    """
    Submit a query, wait for it within the time budget, parse and publish.

    A job still running when the budget is spent, or when the cancel event
    is set, is finalized and treated as having no rows.
    """

    def __init__(self, service: SplunkService, target: queue.Queue, query: str,
                 query_params: Sequence[str], parser: SplunkParser, timeout_sec: float,
                 cancel_event: Optional[threading.Event] = None, poll_interval: float = POLL_TIME_SEC):
        self.service = service
        self.target = target
        self.query = query
        self.query_params = list(query_params)
        self.parser = parser
        self.timeout_sec = timeout_sec
        self.cancel_event = cancel_event or threading.Event()
        self.poll_interval = poll_interval
        self.state = QueryState.PENDING

    @property
    def label(self) -> str:
        return str(self.query_params)

    def __call__(self) -> bool:
        """
        Run the query.

        Returns:
            True once the parsed entities are on the queue, False on failure
        """
        try:
            LOG.info(f"Dispatching query using: {self.label}")
            entities = self._execute()
            for entity in entities:
                self.target.put(entity)
            self.state = QueryState.SUCCEEDED
            LOG.info(f"Published {len(entities)} entities for {self.label}")
            return True
        except (RemoteQueryError, ParseError, requests.RequestException, OSError) as e:
            self.state = QueryState.FAILED
            LOG.warning(f"An error occurred reading the result for {self.label}. Aborting attempt. {e}")
            return False

    def _execute(self) -> List:
        sid = self.service.submit_query(self.query)
        self.state = QueryState.SUBMITTED
        LOG.debug(f"Submitted job {sid} for {self.label}")

        if self._await_job(sid):
            reader = RowReader.empty()
        else:
            reader = self.service.fetch_results(sid)

        return self.parser.parse(reader, self.query_params)

    def _await_job(self, sid: str) -> bool:
        """Poll until the job is ready. Returns True if it was terminated."""
        remaining = self.timeout_sec
        while not self.service.poll_ready(sid):
            if remaining <= 0:
                LOG.warning(f"Query for {self.label} timed out after {self.timeout_sec}s. Terminating job {sid}.")
                self._terminate(sid)
                return True
            if self.cancel_event.wait(self.poll_interval):
                LOG.warning(f"Query for {self.label} was cancelled. Terminating job {sid}.")
                self._terminate(sid)
                return True
            remaining -= self.poll_interval
            LOG.info(f"Awaiting results for {self.label}, job has run for "
                     f"{self.service.run_duration(sid):.1f}s")

        self.state = QueryState.READY
        return False

    def _terminate(self, sid: str) -> None:
        self.service.terminate(sid)
        self.state = QueryState.TERMINATED
