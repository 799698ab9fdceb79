"""
Data source handle shared by all scrapers.

Wraps a SQLAlchemy engine so scrapers get pooled connections, streamed
result rows and query interruption when the scrape context is cancelled.
The engine is shared across threads; every query checks out its own
connection and cursor.
"""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from typing import Any, ContextManager, Iterator, Protocol, Sequence, runtime_checkable

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError

from grmon.context import ScrapeContext
from grmon.errors import ScrapeCancelled

log = logging.getLogger(__name__)

VERSION_QUERY = "SELECT VERSION()"

# Used when the server reports something we can't parse, so every scraper runs
UNKNOWN_VERSION = 999.0

_VERSION_RE = re.compile(r"^\d+\.\d+")

Row = Sequence[Any]


@runtime_checkable
class DataSource(Protocol):
    """What scrapers and the orchestrator need from the database."""

    def query(self, ctx: ScrapeContext, sql: str) -> ContextManager[Iterator[Row]]:
        ...

    def server_version(self) -> float:
        ...

    def close(self):
        ...


def parse_version(raw: Any) -> float:
    """Turn a server version string like '8.0.35-log' into 8.0."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", "replace")
    match = _VERSION_RE.match(str(raw or "").strip())
    if not match:
        log.warning("Could not parse server version %r, assuming %.1f", raw, UNKNOWN_VERSION)
        return UNKNOWN_VERSION
    return float(match.group(0))


def _iter_rows(ctx: ScrapeContext, result) -> Iterator[Row]:
    for row in result:
        ctx.raise_if_done()
        yield tuple(row)


class SQLDataSource:

    def __init__(self, engine: Engine):
        self._engine = engine

    @classmethod
    def from_url(cls, url: str, pool_size: int = 5, **engine_kwargs) -> "SQLDataSource":
        kwargs = dict(pool_pre_ping=True)
        if not url.startswith("sqlite"):
            # Overflow leaves room for KILL QUERY while every pooled connection is busy
            kwargs.update(pool_size=pool_size, max_overflow=2)
        kwargs.update(engine_kwargs)
        return cls(create_engine(url, **kwargs))

    @property
    def engine(self) -> Engine:
        return self._engine

    @contextmanager
    def query(self, ctx: ScrapeContext, sql: str) -> Iterator[Iterator[Row]]:
        """Run a read-only statement and yield its rows lazily.

        The cursor and the pooled connection are released when the block
        exits, whichever way it exits. If the block raised, a failure while
        closing the cursor is logged and the original error wins.
        """
        ctx.raise_if_done()

        with self._engine.connect() as conn:
            dbapi_conn = conn.connection.dbapi_connection
            unregister = ctx.on_cancel(lambda: self._interrupt(dbapi_conn))
            try:
                ctx.raise_if_done()
                result = conn.execution_options(stream_results=True).exec_driver_sql(sql)
                try:
                    ctx.raise_if_done()
                    yield _iter_rows(ctx, result)
                except BaseException:
                    try:
                        result.close()
                    except Exception:
                        log.debug("Cursor close failed after an earlier error", exc_info=True)
                    raise
                else:
                    result.close()
            except DBAPIError as e:
                if ctx.cancelled:
                    try:
                        ctx.raise_if_done()
                    except ScrapeCancelled as cancelled:
                        raise cancelled from e
                raise
            finally:
                unregister()

    def _interrupt(self, dbapi_conn: Any):
        if hasattr(dbapi_conn, "interrupt"):
            # sqlite3 aborts the running statement on the owning connection
            dbapi_conn.interrupt()
            return

        thread_id = getattr(dbapi_conn, "thread_id", None)
        if not callable(thread_id):
            log.debug("Driver %s can't be interrupted, waiting for the query", type(dbapi_conn))
            return

        # MySQL drivers: kill the statement from another pooled connection
        with self._engine.connect() as killer:
            killer.exec_driver_sql(f"KILL QUERY {int(thread_id())}")

    def server_version(self) -> float:
        with self._engine.connect() as conn:
            raw = conn.exec_driver_sql(VERSION_QUERY).scalar()
        version = parse_version(raw)
        log.debug("Server version %r -> %.1f", raw, version)
        return version

    def close(self):
        self._engine.dispose()
