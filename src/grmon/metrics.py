"""
Core metric types for grmon.

Descriptors mirror what a Prometheus collector declares up front (name,
help, label schema). Samples are one observation of a descriptor taken
during a scrape. Both are immutable; samples are built by scrapers and
handed off to the sink, never kept around.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, Sequence, Tuple

from grmon.errors import LabelArityError

NAMESPACE = "mysql"
INNODB_CLUSTER_SCHEMA = "innodb_cluster"
PERF_SCHEMA = "perf_schema"
EXPORTER_SUBSYSTEM = "exporter"


class ValueKind(Enum):
    COUNTER = "counter"
    GAUGE = "gauge"


def build_fq_name(namespace: str, subsystem: str, name: str) -> str:
    """Join the non-empty parts with underscores, e.g. mysql_perf_schema_members."""
    return "_".join(part for part in (namespace, subsystem, name) if part)


@dataclass(frozen=True)
class MetricDescriptor:
    """Static identity of a metric family."""

    name: str
    help: str
    label_names: Tuple[str, ...] = ()

    def __post_init__(self):
        # Accept any sequence but store a tuple so the descriptor stays hashable
        object.__setattr__(self, "label_names", tuple(self.label_names))


@dataclass(frozen=True)
class Sample:
    """A single observation of a descriptor at scrape time."""

    descriptor: MetricDescriptor
    kind: ValueKind
    value: float
    label_values: Tuple[str, ...] = ()

    def __post_init__(self):
        label_values = tuple(self.label_values)
        if len(label_values) != len(self.descriptor.label_names):
            raise LabelArityError(
                f"{self.descriptor.name}: expected {len(self.descriptor.label_names)} "
                f"label values, got {len(label_values)}"
            )
        object.__setattr__(self, "label_values", label_values)
        object.__setattr__(self, "value", float(self.value))

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def labels(self) -> Dict[str, str]:
        return dict(zip(self.descriptor.label_names, self.label_values))

    def summary(self) -> dict:
        """Return a plain dict for display or JSON output."""
        return {
            "name": self.name,
            "kind": self.kind.value,
            "value": self.value,
            "labels": self.labels,
        }


class DescriptorRegistry:
    """Process-wide set of descriptors, built once at startup."""

    def __init__(self, descriptors: Sequence[MetricDescriptor] = ()):
        self._descriptors: Dict[str, MetricDescriptor] = {}
        for descriptor in descriptors:
            self.register(descriptor)

    def register(self, descriptor: MetricDescriptor) -> MetricDescriptor:
        if descriptor.name in self._descriptors:
            raise ValueError(f"Descriptor '{descriptor.name}' is already registered.")
        self._descriptors[descriptor.name] = descriptor
        return descriptor

    def get(self, name: str) -> MetricDescriptor:
        if name not in self._descriptors:
            raise KeyError(f"Descriptor '{name}' is not registered.")
        return self._descriptors[name]

    def __contains__(self, name: object) -> bool:
        return name in self._descriptors

    def __iter__(self) -> Iterator[MetricDescriptor]:
        return iter(self._descriptors.values())

    def __len__(self) -> int:
        return len(self._descriptors)
