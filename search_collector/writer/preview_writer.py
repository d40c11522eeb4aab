"""
Preview writer: prints batches as JSON instead of submitting them.
"""

import json
import logging
import sys
from typing import Any, Dict, List, Optional, TextIO

from .base import Writer
from ..schema.models import Annotation, Metric

LOG = logging.getLogger(__name__)


class PreviewWriter(Writer):
    """
    Writer used with --preview. No network I/O is ever performed.
    """

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout
        self.counts: Dict[str, int] = {'metrics': 0, 'annotations': 0}

    def _emit(self, payload: Any) -> None:
        self.stream.write(json.dumps(payload, indent=2))
        self.stream.write('\n')
        self.stream.flush()

    def put_metrics(self, metrics: List[Metric]) -> None:
        self._require_batch(metrics, "Metrics")
        self._emit([m.to_dict() for m in metrics])
        self.counts['metrics'] += len(metrics)

    def put_annotations(self, annotations: List[Annotation]) -> None:
        self._require_batch(annotations, "Annotations")
        self._emit([a.to_dict() for a in annotations])
        self.counts['annotations'] += len(annotations)

    def query_metrics(self, expression: str) -> List[Dict[str, Any]]:
        """Echo the query instead of running it. Preview runs have no results."""
        if not expression:
            raise ValueError("Expression cannot be null or empty.")
        self._emit({'expression': expression})
        return []

    def close(self) -> None:
        LOG.info(f"Preview complete: {self.counts['metrics']} metrics, {self.counts['annotations']} annotations")
