"""
Result set parsers.

Turn the rows of a finished search job into metrics or annotations using the
mappings of a SplunkConfiguration.
"""

import logging
import re
from abc import ABC, abstractmethod
from calendar import timegm
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..config.reader_config import SplunkConfiguration
from ..core.exceptions import ParseError
from ..schema.models import Annotation, Metric
from .splunk_service import RowReader

LOG = logging.getLogger(__name__)

# Timestamps in results are UTC wall clock times
TIMESTAMP_FORMAT = '%m/%d/%Y %H:%M:%S'

ANNOTATION_SOURCE = 'splunk'

REFERENCE = re.compile(r'\$(param|key)\.(\d+)\$')

Row = Mapping[str, str]


class SplunkParser(ABC):
    """
    Base parser for search results.

    Holds the shared row helpers and the parse loop. Subclasses decide what a
    row turns into and whether a bad row aborts the whole result set.
    """

    # Row error policy when the configuration does not set skip_bad_rows
    skip_bad_rows_default = False

    def __init__(self, configuration: SplunkConfiguration):
        if configuration is None:
            raise ValueError("Configuration cannot be null.")
        self.configuration = configuration
        self.key_mapping = configuration.key_mapping
        self.metric_mapping = configuration.metric_mapping
        self.tag_mapping = configuration.tag_mapping

        override = configuration.skip_bad_rows
        self.skip_bad_rows = self.skip_bad_rows_default if override is None else override

    def parse(self, reader: RowReader, query_params: Sequence[str]) -> List[Any]:
        """
        Parse every row of a result set. The reader is always closed.

        Args:
            reader: Result rows, None for an empty result
            query_params: Parameter vector the query was expanded with

        Returns:
            Parsed entities

        Raises:
            ParseError: If a row is malformed and bad rows are not skipped
        """
        accumulator = self._new_accumulator()
        if reader is None:
            return self._materialize(accumulator)

        try:
            for row in reader:
                try:
                    self._parse_row(row, query_params, accumulator)
                except ParseError as e:
                    if not self.skip_bad_rows:
                        raise
                    LOG.warning(f"Skipping result row: {e}")
        finally:
            try:
                reader.close()
            except OSError as e:
                LOG.warning(f"Failed to close result set: {e}")

        return self._materialize(accumulator)

    @abstractmethod
    def _new_accumulator(self) -> Any:
        pass

    @abstractmethod
    def _parse_row(self, row: Row, query_params: Sequence[str], accumulator: Any) -> None:
        pass

    @abstractmethod
    def _materialize(self, accumulator: Any) -> List[Any]:
        pass

    def parse_timestamp(self, row: Row) -> int:
        """Read the timestamp column as epoch milliseconds (UTC)."""
        column = self.configuration.timestamp_field
        text = row.get(column)
        if text is None:
            raise ParseError(f"Timestamp column '{column}' is missing from the result row", context=row)
        try:
            parsed = datetime.strptime(text.strip(), TIMESTAMP_FORMAT)
        except ValueError as e:
            raise ParseError(f"Timestamp '{text}' is not in MM/dd/yyyy HH:mm:ss form", context=row) from e
        return timegm(parsed.timetuple()) * 1000

    def parse_scope(self, row: Row, query_params: Sequence[str]) -> str:
        return self.apply_substitutions(row, self.configuration.scope, query_params)

    def apply_substitutions(self, row: Row, pattern: str, query_params: Sequence[str]) -> str:
        """
        Resolve ``$param.N$`` and ``$key.N$`` references in a pattern.

        Substitution is a single pass, so values inserted are never expanded
        again. References to unknown indices are left as they are.

        Raises:
            ParseError: If a referenced key column is missing from the row
        """
        def replace(match):
            kind, index = match.group(1), int(match.group(2))
            if kind == 'param':
                return query_params[index] if index < len(query_params) else match.group(0)

            column = self.key_mapping.get(index)
            if column is None:
                return match.group(0)
            value = row.get(column)
            if value is None:
                raise ParseError(f"Key column '{column}' referenced by $key.{index}$ is missing", context=row)
            return value

        return REFERENCE.sub(replace, pattern or '')

    @staticmethod
    def parse_fields(row: Row, mapping: Mapping[str, str]) -> Dict[str, Optional[str]]:
        """Map output names to the row values of their columns."""
        return {name: row.get(column) for name, column in mapping.items()}


class MetricParser(SplunkParser):
    """
    Builds metrics from result rows.

    Rows sharing a scope, metric name and tag set are merged into one metric
    with one datapoint per row timestamp.
    """

    def _new_accumulator(self) -> Dict[tuple, Dict[int, str]]:
        return {}

    def _parse_row(self, row, query_params, accumulator) -> None:
        timestamp = self.parse_timestamp(row)
        scope = self.parse_scope(row, query_params)
        if not scope.strip():
            raise ParseError("Scope resolved to an empty value", context=row)

        tags = {k: v for k, v in self.parse_fields(row, self.tag_mapping).items() if v is not None}
        tag_key = tuple(sorted(tags.items()))

        for name, value in self.parse_fields(row, self.metric_mapping).items():
            if value is None:
                continue
            accumulator.setdefault((scope, name, tag_key), {})[timestamp] = value

    def _materialize(self, accumulator) -> List[Metric]:
        metrics = []
        for (scope, name, tag_key), datapoints in accumulator.items():
            try:
                metrics.append(Metric(scope, name, tags=dict(tag_key), datapoints=datapoints))
            except ValueError as e:
                raise ParseError(f"Invalid metric {scope}:{name}: {e}", context=name) from e
        return metrics


class AnnotationParser(SplunkParser):
    """Builds one annotation per result row."""

    skip_bad_rows_default = True

    def _new_accumulator(self) -> List[Annotation]:
        return []

    def _parse_row(self, row, query_params, accumulator) -> None:
        timestamp = self.parse_timestamp(row)
        scope = self.parse_scope(row, query_params)

        id_field = self.configuration.annotation_id_field
        annotation_id = row.get(id_field)
        if annotation_id is None:
            raise ParseError(f"Annotation id column '{id_field}' is missing from the result row", context=row)

        tags = {k: v for k, v in self.parse_fields(row, self.tag_mapping).items() if v is not None}
        fields = {k: v for k, v in self.parse_fields(row, self.metric_mapping).items() if v is not None}

        try:
            annotation = Annotation(
                source=ANNOTATION_SOURCE,
                id=annotation_id,
                type=self.configuration.annotation_type,
                scope=scope,
                metric=self.configuration.annotation_metricname,
                timestamp=timestamp,
                tags=tags,
                fields=fields,
            )
        except ValueError as e:
            raise ParseError(f"Invalid annotation {annotation_id}: {e}", context=row) from e
        accumulator.append(annotation)

    def _materialize(self, accumulator) -> List[Annotation]:
        return list(accumulator)
