"""
Exceptions raised while scraping.

Driver errors (SQLAlchemy's DBAPIError family) are not wrapped: they reach
the orchestrator as-is and get attributed to the scraper name there.
"""

from __future__ import annotations

from typing import Optional


class ScrapeError(Exception):
    """Base for errors raised by scrapers and the data source."""


class ScanError(ScrapeError):
    """A result row didn't match the column types a scraper expects."""

    def __init__(self, message: str, row_index: Optional[int] = None, column: Optional[str] = None):
        self.row_index = row_index
        self.column = column
        where = []
        if row_index is not None:
            where.append(f"row {row_index}")
        if column is not None:
            where.append(f"column {column}")
        if where:
            message = f"{message} ({', '.join(where)})"
        super().__init__(message)


class ScrapeCancelled(ScrapeError):
    """The scrape context was cancelled before or during the query."""


class ScrapeTimeout(ScrapeCancelled):
    """The scrape context deadline passed."""


class LabelArityError(ValueError):
    """Label values don't match the descriptor's label names. Always a bug."""
