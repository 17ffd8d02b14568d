"""
Declared metric table.

Responsibilities:
- Define the fixed set of (name -> accessor) pairs used to precompute
  metrics at ingestion
- Resolve accessors once at construction
- Derive the field mask needed to serve a set of displayed metrics

Non-responsibilities:
- Deciding which metrics are displayed
- Display formatting / normalization
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping

from telemetry.field_mask import FieldMask
from telemetry.sample import Payload, Sample, get_path, split_path


RAD2DEG: float = 180.0 / math.pi

Accessor = Callable[[Payload], float]


@dataclass(frozen=True)
class MetricSpec:
    """Declarative description of one derived metric."""
    name: str
    path: tuple[str, ...]
    scale: float = 1.0
    label: str = ""
    unit: str = ""

    @property
    def section(self) -> str:
        """Top-level payload section this metric reads from."""
        return self.path[0]


def _make_accessor(spec: MetricSpec) -> Accessor:
    path = spec.path
    scale = spec.scale

    def _extract(payload: Payload) -> float:
        value = get_path(payload, path)
        # bool is an int subclass; a flag is not a metric value
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return 0.0
        return float(value) * scale

    return _extract


class MetricTable:
    """
    Immutable metric registry, resolved once at startup.

    Missing or non-numeric payload values extract as 0.0 so every sample
    carries every metric.
    """

    def __init__(self, specs: Iterable[MetricSpec]) -> None:
        self._specs: dict[str, MetricSpec] = {}
        for spec in specs:
            if not spec.path:
                raise ValueError(f"metric {spec.name!r} has an empty path")
            if spec.name in self._specs:
                raise ValueError(f"duplicate metric {spec.name!r}")
            self._specs[spec.name] = spec

        self._accessors: tuple[tuple[str, Accessor], ...] = tuple(
            (name, _make_accessor(spec)) for name, spec in self._specs.items()
        )

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._specs)

    def spec(self, name: str) -> MetricSpec:
        return self._specs[name]

    def extract(self, payload: Payload) -> dict[str, float]:
        """Compute every declared metric for one payload."""
        return {name: fn(payload) for name, fn in self._accessors}

    def build_sample(self, payload: Payload, timestamp_ms: int) -> Sample:
        """Wrap a raw record into a Sample with metrics precomputed."""
        return Sample(
            timestamp_ms=timestamp_ms,
            metrics=self.extract(payload),
            payload=payload,
        )

    def field_mask(self, names: Iterable[str]) -> FieldMask:
        """
        Field mask covering the payload sections the named metrics need.

        Unknown names raise KeyError; an empty selection yields an empty
        mask (not "all fields").
        """
        return FieldMask.of(self._specs[name].section for name in names)


def _spec(name: str, dotted: str, scale: float, label: str, unit: str) -> MetricSpec:
    return MetricSpec(name=name, path=split_path(dotted), scale=scale, label=label, unit=unit)


DEFAULT_METRIC_SPECS: tuple[MetricSpec, ...] = (
    _spec("speed", "vehicle.speed", 3.6, "Speed", "km/h"),
    _spec("rpm", "vehicle.rpm", 1.0, "RPM", "rpm"),
    _spec("throttle", "vehicle.throttle", 1.0, "Throttle", "%"),
    _spec("brake", "vehicle.brake", 1.0, "Brake", "%"),
    _spec("steering", "vehicle.steering_angle", 1.0, "Steering", "%"),
    _spec("lat_g", "motion.g_force.x", 1.0, "Lateral G", "G"),
    _spec("long_g", "motion.g_force.z", 1.0, "Long G", "G"),
    _spec("vert_g", "motion.g_force.y", 1.0, "Vert G", "G"),
    _spec("pitch", "motion.rotation.x", RAD2DEG, "Pitch", "deg"),
    _spec("yaw_rate", "motion.angular_velocity.y", RAD2DEG, "Yaw Rate", "deg/s"),
    _spec("roll", "motion.rotation.z", RAD2DEG, "Roll", "deg"),
)

DEFAULT_METRICS: MetricTable = MetricTable(DEFAULT_METRIC_SPECS)


def metric_labels(table: MetricTable) -> Mapping[str, str]:
    """name -> human label, for legends."""
    return {name: table.spec(name).label or name for name in table.names}
