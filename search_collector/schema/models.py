"""
Metric and annotation entities submitted to the metrics service.

Both serialize to the JSON shape accepted by the Argus collection endpoints.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

RESERVED_TAG_NAMES = frozenset({'metric', 'displayName', 'units'})


def _require_text(value: Optional[str], name: str) -> str:
    if value is None or not str(value).strip():
        raise ValueError(f"{name} cannot be null or empty.")
    return value


@dataclass
class Metric:
    """A named series of samples within a scope.

    Datapoints map epoch milliseconds to string values and are always kept
    in ascending timestamp order.
    """

    scope: str
    metric: str
    tags: Dict[str, str] = field(default_factory=dict)
    datapoints: Dict[int, str] = field(default_factory=dict)
    display_name: Optional[str] = None
    units: Optional[str] = None

    def __post_init__(self):
        _require_text(self.scope, "Scope")
        _require_text(self.metric, "Metric")
        tags, self.tags = self.tags, {}
        self.set_tags(tags)
        self.set_datapoints(self.datapoints)

    def set_tag(self, name: str, value: str) -> None:
        """Set one tag. Reserved names must be set through their own fields."""
        if name in RESERVED_TAG_NAMES:
            raise ValueError(f"Tag name '{name}' is reserved.")
        _require_text(name, "Tag name")
        self.tags[name] = value

    def set_tags(self, tags: Optional[Mapping[str, str]]) -> None:
        self.tags = {}
        for name, value in (tags or {}).items():
            self.set_tag(name, value)

    def set_datapoints(self, datapoints: Optional[Mapping[int, str]]) -> None:
        self.datapoints = dict(sorted((datapoints or {}).items()))

    def add_datapoints(self, datapoints: Mapping[int, str]) -> None:
        merged = dict(self.datapoints)
        merged.update(datapoints)
        self.set_datapoints(merged)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            'scope': self.scope,
            'metric': self.metric,
            'tags': dict(self.tags),
            'datapoints': {str(ts): value for ts, value in self.datapoints.items()},
        }
        if self.display_name is not None:
            result['displayName'] = self.display_name
        if self.units is not None:
            result['units'] = self.units
        return result

    def __str__(self) -> str:
        return f"scope=>{self.scope}, metric=>{self.metric}, tags=>{self.tags}, datapoints=>{self.datapoints}"


@dataclass
class Annotation:
    """A discrete event attached to a metric."""

    source: str
    id: str
    type: str
    scope: str
    metric: str
    timestamp: int
    tags: Dict[str, str] = field(default_factory=dict)
    fields: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        _require_text(self.id, "Annotation id")
        if self.timestamp is None:
            raise ValueError("Annotation timestamp cannot be null.")
        if any(name in RESERVED_TAG_NAMES for name in self.tags):
            raise ValueError(f"Annotation tags cannot use reserved names {sorted(RESERVED_TAG_NAMES)}.")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source': self.source,
            'id': self.id,
            'type': self.type,
            'scope': self.scope,
            'metric': self.metric,
            'timestamp': self.timestamp,
            'tags': dict(self.tags),
            'fields': dict(self.fields),
        }
