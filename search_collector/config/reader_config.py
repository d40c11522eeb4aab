"""
Splunk reader configuration.

Supported properties:

- host: Splunk management host. Defaults to localhost.
- port: Splunk management port. Defaults to 8214.
- username / password: Splunk credentials (required).
- timeout_sec: Seconds after which queries are abandoned. Defaults to 10000.
- worker_count: Number of queries run in parallel. Defaults to 3.
- annotation_collection: true to collect annotations instead of metrics.
- annotation_type: Annotation type label, required for annotation collection.
- annotation_metricname: Metric the annotations are stored against.
  Defaults to global.annotations.
- annotation_id_field: Result column holding the annotation id. Defaults to id.
- timestamp: Result column holding the ``MM/dd/yyyy HH:mm:ss`` timestamp.
  Defaults to time.
- scope: Scope pattern. May contain ``$param.N$`` and ``$key.N$`` references.
- query: Search to run. ``{N}`` placeholders are filled from ``param.N``.
- param.N: Quoted, comma separated values (``"a","b"``). All lists must have
  the same length, which is the number of query iterations.
- key.N: Result column whose value can be referenced as ``$key.N$``.
- metric.NAME: Result column holding the values of metric NAME.
- tag.NAME: Result column holding the values of tag NAME.
- tls_validation: strict, normal or none. Defaults to normal.
- tls_ca: CA bundle used to verify the Splunk endpoint.
- skip_bad_rows: true or false to apply one row error policy to both parsers.

Sample metric collection configuration::

    host=localhost
    port=8089
    username=splunkrobot
    password=secret
    key.0=index
    metric.querycount=querycount
    metric.linecount=linecount
    param.0="_audit","_internal"
    query=search earliest=-30m@m index={0} | bucket _time span=10m | eval time=strftime(_time, "%m/%d/%Y %H:%M:%S") | stats count as querycount, sum(linecount) as linecount by time, index, splunk_server
    scope=$key.0$
    tag.server=splunk_server
    timeout_sec=500
    timestamp=time
"""

import logging
import re
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from ..core.exceptions import ConfigurationError
from ..schema.models import RESERVED_TAG_NAMES
from .properties import RawConfig

LOG = logging.getLogger(__name__)

PARAM_SEPARATOR = re.compile(r'"\s*,\s*"')
PLACEHOLDER = re.compile(r'\{(\d+)\}')
TLS_MODES = ('strict', 'normal', 'none')


class Parameter(Enum):
    """Named reader parameters and their defaults."""

    HOST = ('host', 'localhost')
    PORT = ('port', '8214')
    USERNAME = ('username', '')
    PASSWORD = ('password', '')
    TIMEOUT_SEC = ('timeout_sec', '10000')
    WORKER_COUNT = ('worker_count', '3')
    ANNOTATION_COLLECTION = ('annotation_collection', 'false')
    ANNOTATION_TYPE = ('annotation_type', '')
    ANNOTATION_METRICNAME = ('annotation_metricname', 'global.annotations')
    ANNOTATION_ID_FIELD = ('annotation_id_field', 'id')
    SCOPE = ('scope', '')
    TIMESTAMP = ('timestamp', 'time')
    QUERY = ('query', '')
    TLS_VALIDATION = ('tls_validation', 'normal')
    TLS_CA = ('tls_ca', '')
    SKIP_BAD_ROWS = ('skip_bad_rows', '')

    def __init__(self, key: str, default: str):
        self.key = key
        self.default = default


def extract_mapping(props: Mapping[str, str], prefix: str) -> Dict[str, str]:
    """
    Extract the entries sharing a key prefix, with the prefix stripped.

    Args:
        props: Property bag
        prefix: Group prefix without the trailing dot, e.g. ``metric``

    Returns:
        Ordered mapping of suffix to value, in first-seen order
    """
    marker = prefix + '.'
    result: Dict[str, str] = OrderedDict()
    for key, value in props.items():
        if key.startswith(marker):
            result[key[len(marker):]] = value
    return result


def split_param_values(value: str) -> List[str]:
    """Split ``"a","b"`` into ``['a', 'b']``."""
    value = value.strip()
    if value.startswith('"'):
        value = value[1:]
    if value.endswith('"'):
        value = value[:-1]
    return PARAM_SEPARATOR.split(value)


def substitute_placeholders(template: str, values: List[str]) -> str:
    """Replace ``{N}`` placeholders with ``values[N]``. Other braces are kept."""
    def replace(match):
        index = int(match.group(1))
        return values[index] if index < len(values) else match.group(0)

    return PLACEHOLDER.sub(replace, template)


def expand_queries(template: str, param_values: Mapping[int, List[str]]) -> Dict[str, List[str]]:
    """
    Expand a query template once per parameter iteration.

    Args:
        template: Query text with ``{N}`` placeholders
        param_values: Parameter index to its list of values

    Returns:
        Ordered mapping of expanded query text to the parameter vector used.
        With no parameters the template is returned unchanged with an empty
        vector. Iterations producing the same text collapse into one entry.
    """
    result: Dict[str, List[str]] = OrderedDict()
    if not param_values:
        result[template] = []
        return result

    ordered = [param_values[index] for index in sorted(param_values)]
    iterations = len(ordered[0])
    for i in range(iterations):
        vector = [values[i] for values in ordered]
        result[substitute_placeholders(template, vector)] = vector
    return result


def _to_bool(value: str) -> bool:
    return value.strip().lower() == 'true'


def _indexed(mapping: Dict[str, str], prefix: str) -> Dict[int, str]:
    """Convert a ``prefix.N`` group into an index-keyed table."""
    result: Dict[int, str] = {}
    for suffix, value in mapping.items():
        try:
            result[int(suffix)] = value
        except ValueError:
            raise ConfigurationError(f"'{prefix}.{suffix}' must have a numeric index", context=prefix)
    return dict(sorted(result.items()))


@dataclass(frozen=True)
class SplunkConfiguration:
    """Immutable, validated Splunk reader configuration.

    Built once per run by from_properties() and shared by reference with the
    reader, its workers and the parsers.
    """

    properties: Mapping[str, str]
    key_mapping: Mapping[int, str]
    metric_mapping: Mapping[str, str]
    tag_mapping: Mapping[str, str]
    param_values: Mapping[int, Tuple[str, ...]]

    @classmethod
    def from_properties(cls, props: RawConfig) -> 'SplunkConfiguration':
        """
        Parse and validate a raw property bag.

        Raises:
            ConfigurationError: If a mapping group or typed value is malformed
        """
        for key in sorted(props):
            if key == Parameter.QUERY.key:
                LOG.info(f'Using configured value for {key} of : "{props[key]}"')
            elif key != Parameter.PASSWORD.key:
                LOG.debug(f'Using configured value for {key} of : "{props[key]}"')

        key_mapping = _indexed(extract_mapping(props, 'key'), 'key')
        metric_mapping = extract_mapping(props, 'metric')
        tag_mapping = extract_mapping(props, 'tag')

        for prefix, mapping in (('metric', metric_mapping), ('tag', tag_mapping)):
            if '' in mapping:
                raise ConfigurationError(f"'{prefix}.' entries need a name after the dot", context=prefix)

        reserved = RESERVED_TAG_NAMES.intersection(tag_mapping)
        if reserved:
            raise ConfigurationError(f"Reserved tag names cannot be mapped: {sorted(reserved)}", context='tag')

        raw_params = _indexed(extract_mapping(props, 'param'), 'param')
        if raw_params and list(raw_params) != list(range(len(raw_params))):
            raise ConfigurationError(
                f"param.N indices must run from 0 without gaps, found {list(raw_params)}", context='param')

        param_values = {index: tuple(split_param_values(value)) for index, value in raw_params.items()}
        lengths = {index: len(values) for index, values in param_values.items()}
        if len(set(lengths.values())) > 1:
            raise ConfigurationError(f"All param.N lists must have the same length, found {lengths}", context='param')

        config = cls(
            properties=MappingProxyType(OrderedDict(props)),
            key_mapping=MappingProxyType(key_mapping),
            metric_mapping=MappingProxyType(metric_mapping),
            tag_mapping=MappingProxyType(tag_mapping),
            param_values=MappingProxyType(param_values),
        )
        config._validate()
        return config

    def _validate(self) -> None:
        # Typed accessors raise on bad values
        _ = (self.port, self.timeout_sec, self.worker_count, self.skip_bad_rows)

        if self.tls_validation not in TLS_MODES:
            raise ConfigurationError(f"tls_validation must be one of {TLS_MODES}", context=Parameter.TLS_VALIDATION)

        if self.param_values:
            referenced = [int(i) for i in PLACEHOLDER.findall(self.query)]
            if referenced and max(referenced) >= len(self.param_values):
                raise ConfigurationError(
                    f"Query references {{{max(referenced)}}} but only {len(self.param_values)} param.N entries exist",
                    context=Parameter.QUERY)

    def resolve(self, param: Parameter) -> str:
        """Return the configured value for a parameter or its default."""
        value = self.properties.get(param.key)
        return param.default if value is None else value

    def extract_mapping(self, prefix: str) -> Dict[str, str]:
        return extract_mapping(self.properties, prefix)

    def expand_queries(self) -> Dict[str, List[str]]:
        """Return every expanded query with the parameter vector that produced it."""
        values = {index: list(v) for index, v in self.param_values.items()}
        return expand_queries(self.query, values)

    def _int(self, param: Parameter, minimum: int) -> int:
        raw = self.resolve(param)
        try:
            value = int(raw)
        except ValueError:
            raise ConfigurationError(f"Parameter \"{param.key}\" must be an integer, got {raw!r}", context=param)
        if value < minimum:
            raise ConfigurationError(f"Parameter \"{param.key}\" must be at least {minimum}", context=param)
        return value

    @property
    def host(self) -> str:
        return self.resolve(Parameter.HOST)

    @property
    def port(self) -> int:
        return self._int(Parameter.PORT, 0)

    @property
    def username(self) -> str:
        return self.resolve(Parameter.USERNAME)

    @property
    def password(self) -> str:
        return self.resolve(Parameter.PASSWORD)

    @property
    def timeout_sec(self) -> int:
        return self._int(Parameter.TIMEOUT_SEC, 1)

    @property
    def worker_count(self) -> int:
        return self._int(Parameter.WORKER_COUNT, 1)

    @property
    def annotation_collection(self) -> bool:
        return _to_bool(self.resolve(Parameter.ANNOTATION_COLLECTION))

    @property
    def annotation_type(self) -> str:
        return self.resolve(Parameter.ANNOTATION_TYPE)

    @property
    def annotation_metricname(self) -> str:
        return self.resolve(Parameter.ANNOTATION_METRICNAME)

    @property
    def annotation_id_field(self) -> str:
        return self.resolve(Parameter.ANNOTATION_ID_FIELD)

    @property
    def scope(self) -> str:
        return self.resolve(Parameter.SCOPE)

    @property
    def timestamp_field(self) -> str:
        return self.resolve(Parameter.TIMESTAMP)

    @property
    def query(self) -> str:
        return self.resolve(Parameter.QUERY)

    @property
    def tls_validation(self) -> str:
        return self.resolve(Parameter.TLS_VALIDATION).strip().lower()

    @property
    def tls_ca(self) -> Optional[str]:
        return self.resolve(Parameter.TLS_CA) or None

    @property
    def skip_bad_rows(self) -> Optional[bool]:
        """Row error policy override, None when unset."""
        raw = self.resolve(Parameter.SKIP_BAD_ROWS).strip().lower()
        if not raw:
            return None
        if raw not in ('true', 'false'):
            raise ConfigurationError(f"skip_bad_rows must be true or false, got {raw!r}", context=Parameter.SKIP_BAD_ROWS)
        return raw == 'true'
