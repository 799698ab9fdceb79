"""
Drives the scrapers: one cycle = version check, concurrent scrapes under a
shared deadline, failure attribution, and a store update.

Scrapers never retry and never see each other's errors. A failing scraper
is recorded in the report and the rest carry on.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import List, Optional

from grmon.collector import ScraperRegistry
from grmon.collector.base import Scraper
from grmon.context import ScrapeContext
from grmon.metrics import (
    EXPORTER_SUBSYSTEM,
    NAMESPACE,
    MetricDescriptor,
    Sample,
    ValueKind,
    build_fq_name,
)
from grmon.sink import SampleSink, SampleStore
from grmon.source import DataSource

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_WORKERS = 4


@dataclass(frozen=True)
class ScraperFailure:
    name: str
    error: BaseException

    def __str__(self) -> str:
        return f"{self.name}: {type(self.error).__name__}: {self.error}"


@dataclass
class ScrapeReport:
    """Outcome of one cycle."""

    up: bool
    version: Optional[float] = None
    samples: List[Sample] = field(default_factory=list)
    failures: List[ScraperFailure] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.up and not self.failures


@dataclass(frozen=True)
class ExporterDescriptors:
    up: MetricDescriptor
    collector_success: MetricDescriptor
    collector_duration: MetricDescriptor
    last_scrape_error: MetricDescriptor

    @classmethod
    def build(cls) -> "ExporterDescriptors":
        return cls(
            up=MetricDescriptor(
                build_fq_name(NAMESPACE, "", "up"),
                "Whether the MySQL server is up.",
            ),
            collector_success=MetricDescriptor(
                build_fq_name(NAMESPACE, EXPORTER_SUBSYSTEM, "collector_success"),
                "mysqld_exporter: Whether a collector succeeded.",
                ("collector",),
            ),
            collector_duration=MetricDescriptor(
                build_fq_name(NAMESPACE, EXPORTER_SUBSYSTEM, "collector_duration_seconds"),
                "Collector time duration.",
                ("collector",),
            ),
            last_scrape_error=MetricDescriptor(
                build_fq_name(NAMESPACE, EXPORTER_SUBSYSTEM, "last_scrape_error"),
                "Whether the last scrape of metrics from MySQL resulted in an error (1 for error, 0 for success).",
            ),
        )

    def all(self) -> List[MetricDescriptor]:
        return [self.up, self.collector_success, self.collector_duration, self.last_scrape_error]


class Orchestrator:

    def __init__(
        self,
        source: DataSource,
        scrapers: ScraperRegistry,
        timeout_seconds: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
        max_workers: int = DEFAULT_WORKERS,
        store: Optional[SampleStore] = None,
    ):
        self._source = source
        self._scrapers = scrapers
        self._timeout = timeout_seconds
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="grmon-scrape"
        )
        self._exporter = ExporterDescriptors.build()
        self.store = store if store is not None else SampleStore()

    @property
    def source(self) -> DataSource:
        return self._source

    @property
    def scrapers(self) -> ScraperRegistry:
        return self._scrapers

    def run_once(self) -> ScrapeReport:
        started = time.monotonic()
        sink = SampleSink()

        try:
            version = self._source.server_version()
        except Exception as e:
            log.error("Error pinging MySQL: %s", e)
            report = ScrapeReport(up=False)
            report.samples = [Sample(self._exporter.up, ValueKind.GAUGE, 0)]
            report.duration_seconds = time.monotonic() - started
            # Nothing from the previous cycle is current any more
            everything = [d for s in self._scrapers for d in self._scrapers.descriptors_for(s.name())]
            self.store.replace(report.samples, everything + self._exporter.all())
            return report

        report = ScrapeReport(up=True, version=version)
        runnable: List[Scraper] = []
        for scraper in self._scrapers:
            if scraper.minimum_source_version() > version:
                log.debug(
                    "Skipping %s: needs version %.1f, server is %.1f",
                    scraper.name(), scraper.minimum_source_version(), version,
                )
                report.skipped.append(scraper.name())
            else:
                runnable.append(scraper)

        with ScrapeContext(timeout=self._timeout) as ctx:
            futures = {
                self._executor.submit(self._scrape_one, ctx, scraper, sink): scraper
                for scraper in runnable
            }
            wait(futures)

        exporter_samples = [Sample(self._exporter.up, ValueKind.GAUGE, 1)]
        fresh_descriptors: List[MetricDescriptor] = []
        # Skipped and failed scrapers get their entries cleared, not kept
        cleared_descriptors: List[MetricDescriptor] = [
            d for name in report.skipped for d in self._scrapers.descriptors_for(name)
        ]
        for future, scraper in futures.items():
            name = scraper.name()
            duration, error = future.result()
            if error is not None:
                report.failures.append(ScraperFailure(name, error))
                cleared_descriptors.extend(self._scrapers.descriptors_for(name))
            else:
                fresh_descriptors.extend(self._scrapers.descriptors_for(name))
            exporter_samples.append(Sample(
                self._exporter.collector_success, ValueKind.GAUGE,
                0 if error is not None else 1, (name,),
            ))
            exporter_samples.append(Sample(
                self._exporter.collector_duration, ValueKind.GAUGE, duration, (name,),
            ))
        exporter_samples.append(Sample(
            self._exporter.last_scrape_error, ValueKind.GAUGE, 1 if report.failures else 0,
        ))

        scraped = sink.drain()
        report.samples = scraped + exporter_samples
        report.duration_seconds = time.monotonic() - started

        # Partial output of a failed scraper is reported but never stored
        fresh_names = {d.name for d in fresh_descriptors}
        self.store.replace(
            [s for s in scraped if s.name in fresh_names] + exporter_samples,
            fresh_descriptors + cleared_descriptors + self._exporter.all(),
        )

        log.info(
            "Scrape finished in %.3fs: %d samples, %d failed, %d skipped",
            report.duration_seconds, len(report.samples), len(report.failures), len(report.skipped),
        )
        return report

    def _scrape_one(self, ctx: ScrapeContext, scraper: Scraper, sink: SampleSink):
        started = time.monotonic()
        try:
            scraper.scrape(ctx, self._source, sink)
        except Exception as e:
            log.warning("Error from scraper %s: %s", scraper.name(), e)
            return time.monotonic() - started, e
        return time.monotonic() - started, None

    def close(self):
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "Orchestrator":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
