"""
Processed telemetry sample and payload access.

Rules:
- A Sample is an immutable value: buffers own storage, consumers get
  read-only views.
- The payload is an opaque structured record. The only sanctioned way to
  reach into it is get_path(); no recursive traversal elsewhere.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Sequence


Payload = Mapping[str, Any]


@dataclass(frozen=True)
class Sample:
    """
    One processed telemetry sample.

    timestamp_ms:
        Receipt time (live) or recording time (replay). Non-decreasing
        within a buffer.
    metrics:
        metric-name -> value, precomputed once at ingestion.
    payload:
        The raw record as delivered by the source.
    """

    timestamp_ms: int
    metrics: Mapping[str, float] = field(default_factory=dict)
    payload: Payload = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Consumers must not be able to mutate buffer storage at any depth
        if not isinstance(self.metrics, MappingProxyType):
            object.__setattr__(self, "metrics", MappingProxyType(dict(self.metrics)))
        object.__setattr__(self, "payload", _freeze(self.payload))

    def metric(self, name: str) -> float | None:
        """Return a precomputed metric, or None if it was not extracted."""
        return self.metrics.get(name)


def _freeze(value: Any) -> Any:
    """Read-only deep copy: mappings become proxies, lists become tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def get_path(record: Any, path: Sequence[str]) -> Any | None:
    """
    Return the value at a nested key path, or None if any hop is missing.

    Only mappings are traversed. Anything else on the way (lists, scalars,
    None) ends the walk with None.
    """
    node = record
    for key in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
        if node is None:
            return None
    return node


def split_path(dotted: str) -> tuple[str, ...]:
    """'motion.g_force.x' -> ('motion', 'g_force', 'x')"""
    return tuple(part for part in dotted.split(".") if part)
