"""Static scraper registry. Maps scraper names to instances."""

from __future__ import annotations

from collections import OrderedDict
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from grmon.collector import innodb_cluster, perf_schema
from grmon.collector.base import Scraper
from grmon.collector.innodb_cluster import InnodbClusterPrimary, InnodbClusterSecondary
from grmon.collector.perf_schema import ReplicationGroupMembers
from grmon.metrics import DescriptorRegistry, MetricDescriptor, ValueKind


class ScraperRegistry:

    def __init__(self) -> None:
        self._scrapers: "OrderedDict[str, Scraper]" = OrderedDict()
        self._descriptors: Dict[str, Tuple[MetricDescriptor, ...]] = {}

    def register(self, scraper: Scraper, descriptors: Sequence[MetricDescriptor] = ()) -> None:
        name = scraper.name()
        if name in self._scrapers:
            raise ValueError(f"Scraper '{name}' is already registered.")
        self._scrapers[name] = scraper
        self._descriptors[name] = tuple(descriptors)

    def get(self, name: str) -> Scraper:
        if name not in self._scrapers:
            raise KeyError(f"Scraper '{name}' is not registered.")
        return self._scrapers[name]

    def descriptors_for(self, name: str) -> Tuple[MetricDescriptor, ...]:
        self.get(name)
        return self._descriptors[name]

    def names(self) -> List[str]:
        return list(self._scrapers)

    def select(
        self,
        enabled: Optional[Iterable[str]] = None,
        disabled: Iterable[str] = (),
    ) -> "ScraperRegistry":
        """Return a registry holding only the chosen scrapers.

        `enabled` is an allow-list (None means all), `disabled` is applied
        after it. Unknown names raise KeyError so typos don't go unnoticed.
        """
        enabled = list(enabled) if enabled is not None else None
        disabled = set(disabled)
        for name in (enabled or []) + sorted(disabled):
            self.get(name)

        selected = ScraperRegistry()
        for name, scraper in self._scrapers.items():
            if enabled is not None and name not in enabled:
                continue
            if name in disabled:
                continue
            selected.register(scraper, self._descriptors[name])
        return selected

    def __iter__(self) -> Iterator[Scraper]:
        return iter(self._scrapers.values())

    def __len__(self) -> int:
        return len(self._scrapers)


def build_descriptors() -> DescriptorRegistry:
    """Every descriptor the scrapers emit. Built once at startup."""
    return DescriptorRegistry(innodb_cluster.descriptors() + perf_schema.descriptors())


def build_scrapers(
    descriptors: DescriptorRegistry,
    primary_kind: ValueKind = ValueKind.GAUGE,
) -> ScraperRegistry:
    primary = descriptors.get(innodb_cluster.PRIMARY_METRIC)
    secondary = descriptors.get(innodb_cluster.SECONDARY_METRIC)
    members = descriptors.get(perf_schema.MEMBERS_METRIC)

    registry = ScraperRegistry()
    registry.register(InnodbClusterPrimary(primary, kind=primary_kind), [primary])
    registry.register(InnodbClusterSecondary(secondary), [secondary])
    registry.register(ReplicationGroupMembers(members), [members])
    return registry
