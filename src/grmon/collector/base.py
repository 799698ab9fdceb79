"""
Base scraper interface.

A scraper polls one narrow slice of server state with a fixed read-only
query and pushes samples onto a sink. The orchestrator only talks to this
interface, so scrapers stay decoupled from scheduling, version gating and
how samples are exposed.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Optional, Sequence, Tuple

from grmon.context import ScrapeContext
from grmon.errors import ScanError
from grmon.metrics import Sample
from grmon.sink import SampleSink
from grmon.source import DataSource

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PluginMetadata:
    name: str
    help_text: str
    min_source_version: float


class Scraper(ABC):
    """Interface for all scrapers."""

    @abstractmethod
    def name(self) -> str:
        """Unique identifier, used for enable/disable and error attribution."""
        ...

    @abstractmethod
    def help(self) -> str:
        ...

    @abstractmethod
    def minimum_source_version(self) -> float:
        """Lowest server version the query is known to work on.

        The caller checks this before invoking scrape().
        """
        ...

    @abstractmethod
    def scrape(self, ctx: ScrapeContext, source: DataSource, sink: SampleSink) -> None:
        """Run the query and push samples. Raises on the first error."""
        ...


class QueryScraper(Scraper):
    """Scraper defined by constant data: metadata, query text, column order.

    Columns are bound by position. `columns` pins the projection order of
    `query` and is what row arity is checked against.
    """

    metadata: PluginMetadata
    query: str
    columns: Tuple[str, ...]

    def name(self) -> str:
        return self.metadata.name

    def help(self) -> str:
        return self.metadata.help_text

    def minimum_source_version(self) -> float:
        return self.metadata.min_source_version

    @abstractmethod
    def map_row(self, row: Sequence[Any], index: int) -> List[Sample]:
        """Build the samples for one result row."""
        ...

    def scrape(self, ctx: ScrapeContext, source: DataSource, sink: SampleSink) -> None:
        emitted = 0
        with source.query(ctx, self.query) as rows:
            for index, row in enumerate(rows):
                if len(row) != len(self.columns):
                    raise ScanError(
                        f"expected {len(self.columns)} columns, got {len(row)}",
                        row_index=index,
                    )
                for sample in self.map_row(row, index):
                    sink.push(sample)
                    emitted += 1
        log.debug("%s: pushed %d samples", self.name(), emitted)


def scan_count(value: Any, row_index: Optional[int] = None, column: Optional[str] = None) -> float:
    """Read an unsigned count column as a float.

    Counts above 2**53 lose precision. That's accepted.
    """
    if value is None:
        raise ScanError("NULL count", row_index, column)
    if isinstance(value, bool):
        raise ScanError(f"unexpected boolean {value!r}", row_index, column)
    if isinstance(value, bytes):
        value = value.decode("utf-8", "replace")
    if isinstance(value, str):
        text = value.strip()
        if not (text.isascii() and text.isdigit()):
            raise ScanError(f"not an unsigned integer: {value!r}", row_index, column)
        value = int(text)
    if isinstance(value, float) and not value.is_integer():
        raise ScanError(f"not an unsigned integer: {value!r}", row_index, column)
    if isinstance(value, Decimal) and value != value.to_integral_value():
        raise ScanError(f"not an unsigned integer: {value!r}", row_index, column)
    if not isinstance(value, (int, float, Decimal)):
        raise ScanError(f"unsupported type {type(value).__name__}", row_index, column)
    if value < 0:
        raise ScanError(f"negative count {value!r}", row_index, column)
    return float(value)


def scan_text(value: Any, row_index: Optional[int] = None, column: Optional[str] = None) -> str:
    """Read a text column verbatim. No case or whitespace normalization."""
    if value is None:
        raise ScanError("NULL text", row_index, column)
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ScanError(f"undecodable bytes: {e}", row_index, column) from e
    if isinstance(value, str):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        # MEMBER_PORT comes back as an integer on MySQL
        return str(value)
    raise ScanError(f"unsupported type {type(value).__name__}", row_index, column)
