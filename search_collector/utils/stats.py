"""
Run statistics exposed as Prometheus metrics.

Counts the entities and batches relayed downstream and the outcome of each
query. The registry can be scraped over HTTP while a long collection runs,
and is summarized in the log when the run ends.
"""

import logging
import threading
from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, generate_latest, start_http_server

# Initialize logger
LOG = logging.getLogger(__name__)


class RelayStatistics:
    """Prometheus counters for one collector process."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        # Separate registry so tests and embedded use do not collide
        self.registry = registry or CollectorRegistry()
        self.server_started = False
        self.server_lock = threading.Lock()

        self.entities = Counter(
            'search_collector_entities_forwarded',
            'Entities forwarded to the metrics service',
            ['kind'],
            registry=self.registry
        )
        self.batches = Counter(
            'search_collector_batches_forwarded',
            'Batches forwarded to the metrics service',
            ['kind'],
            registry=self.registry
        )
        self.failures = Counter(
            'search_collector_batch_failures',
            'Batches the metrics service rejected',
            ['kind'],
            registry=self.registry
        )
        self.queries = Counter(
            'search_collector_queries',
            'Search queries by outcome',
            ['outcome'],
            registry=self.registry
        )

    def record_batch(self, kind: str, size: int) -> None:
        self.entities.labels(kind=kind).inc(size)
        self.batches.labels(kind=kind).inc()

    def record_failure(self, kind: str) -> None:
        self.failures.labels(kind=kind).inc()

    def record_queries(self, succeeded: int, failed: int, abandoned: int) -> None:
        self.queries.labels(outcome='succeeded').inc(succeeded)
        self.queries.labels(outcome='failed').inc(failed)
        self.queries.labels(outcome='abandoned').inc(abandoned)

    def serve(self, port: int) -> None:
        """Start the Prometheus HTTP endpoint if not already started."""
        with self.server_lock:
            if not self.server_started:
                start_http_server(port, registry=self.registry)
                self.server_started = True
                LOG.info(f"Prometheus metrics server started on port {port}")

    def _value(self, name: str, labels: Dict[str, str]) -> int:
        value = self.registry.get_sample_value(f"{name}_total", labels)
        return int(value or 0)

    def summary(self) -> Dict[str, int]:
        """Flat view of the counters, for logging."""
        return {
            'metrics_forwarded': self._value('search_collector_entities_forwarded', {'kind': 'metric'}),
            'annotations_forwarded': self._value('search_collector_entities_forwarded', {'kind': 'annotation'}),
            'batch_failures': (self._value('search_collector_batch_failures', {'kind': 'metric'}) +
                               self._value('search_collector_batch_failures', {'kind': 'annotation'})),
            'queries_succeeded': self._value('search_collector_queries', {'outcome': 'succeeded'}),
            'queries_failed': self._value('search_collector_queries', {'outcome': 'failed'}),
            'queries_abandoned': self._value('search_collector_queries', {'outcome': 'abandoned'}),
        }

    def render(self) -> str:
        """Prometheus text exposition of the registry."""
        return generate_latest(self.registry).decode('utf-8')
