"""
Integration tests for SQLDataSource and the scrapers against SQLite.

The fixture attaches an in-memory database as performance_schema and adds
a VERSION() function, so the scrapers' real query text runs unchanged.
"""

import itertools
import logging
import sqlite3
import time

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError

from conftest import FakeDataSource, make_sqlite_engine
from grmon.collector import build_descriptors, build_scrapers
from grmon.context import ScrapeContext
from grmon.errors import ScrapeCancelled, ScrapeTimeout
from grmon.sink import SampleSink
from grmon.source import UNKNOWN_VERSION, DataSource, SQLDataSource, parse_version

ENDLESS_QUERY = """
    WITH RECURSIVE n(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM n)
    SELECT COUNT(*) FROM n
"""


def _scrape(source, name):
    scrapers = build_scrapers(build_descriptors())
    sink = SampleSink()
    with ScrapeContext(timeout=5.0) as ctx:
        scrapers.get(name).scrape(ctx, source, sink)
    return sink.drain()


@pytest.mark.parametrize("raw,expected", [
    ("8.0.35-log", 8.0),
    ("8.0.35", 8.0),
    ("5.7.44-48-log", 5.7),
    (b"8.4.0", 8.4),
    ("10.11.6-MariaDB", 10.11),
])
def test_parse_version(raw, expected):
    assert parse_version(raw) == expected


def test_parse_version_unknown_runs_everything():
    assert parse_version("garbage") == UNKNOWN_VERSION
    assert parse_version(None) == UNKNOWN_VERSION


def test_server_version(sqlite_source):
    assert sqlite_source.server_version() == 8.0


def test_sources_satisfy_data_source_protocol(sqlite_source):
    assert isinstance(sqlite_source, DataSource)
    assert isinstance(FakeDataSource(), DataSource)


def test_query_yields_rows(sqlite_source):
    with ScrapeContext() as ctx:
        with sqlite_source.query(ctx, "SELECT 1, 'a' UNION ALL SELECT 2, 'b'") as rows:
            assert list(rows) == [(1, "a"), (2, "b")]


def test_query_returns_connection_to_pool():
    engine = make_sqlite_engine()
    checkins = []
    event.listen(engine, "checkin", lambda *_: checkins.append(1))
    source = SQLDataSource(engine)

    with ScrapeContext() as ctx:
        with source.query(ctx, "SELECT 1") as rows:
            list(rows)
        assert len(checkins) == 1

        with pytest.raises(RuntimeError):
            with source.query(ctx, "SELECT 1") as rows:
                raise RuntimeError("mapping failed")
        assert len(checkins) == 2
    source.close()


def test_query_error_propagates(sqlite_source):
    with ScrapeContext() as ctx:
        with pytest.raises(OperationalError):
            with sqlite_source.query(ctx, "SELECT * FROM performance_schema.nope") as rows:
                list(rows)


def test_cancelled_context_never_issues_query(sqlite_source):
    executed = []
    event.listen(sqlite_source.engine, "before_cursor_execute", lambda *a: executed.append(a[2]))
    ctx = ScrapeContext()
    ctx.cancel()
    with pytest.raises(ScrapeCancelled):
        with sqlite_source.query(ctx, "SELECT 1") as rows:
            list(rows)
    assert executed == []


def test_deadline_interrupts_running_query(sqlite_source):
    started = time.monotonic()
    with ScrapeContext(timeout=0.5) as ctx:
        with pytest.raises(ScrapeTimeout) as excinfo:
            with sqlite_source.query(ctx, ENDLESS_QUERY) as rows:
                list(rows)
    assert time.monotonic() - started < 10
    assert isinstance(excinfo.value.__cause__, OperationalError)


class _DriverConnection:
    """A sqlite3 connection posing as a driver without interrupt().

    With a thread id it looks like a MySQL driver connection.
    """

    def __init__(self, conn, thread_id=None):
        self._conn = conn
        self._thread_id = thread_id

    def __getattr__(self, name):
        if name == "interrupt" or (name == "thread_id" and self._thread_id is None):
            raise AttributeError(name)
        if name == "thread_id":
            return lambda: self._thread_id
        return getattr(self._conn, name)


def _driver_engine(tmp_path, with_thread_id):
    ids = itertools.count(41)
    path = str(tmp_path / "grmon.sqlite")

    def connect():
        return _DriverConnection(sqlite3.connect(path), next(ids) if with_thread_id else None)

    engine = create_engine(f"sqlite:///{path}", creator=connect)
    issued = []

    def record(conn, cursor, statement, parameters, context, executemany):
        issued.append((conn.connection.dbapi_connection, statement))
        if statement.startswith("KILL QUERY"):
            # SQLite has no KILL; run something harmless in its place
            return "SELECT 1", parameters
        return statement, parameters

    event.listen(engine, "before_cursor_execute", record, retval=True)
    return engine, issued


def test_cancel_kills_query_from_another_connection(tmp_path):
    engine, issued = _driver_engine(tmp_path, with_thread_id=True)
    source = SQLDataSource(engine)
    ctx = ScrapeContext()

    with pytest.raises(ScrapeCancelled):
        with source.query(ctx, "SELECT 1 UNION ALL SELECT 2") as rows:
            ctx.cancel()
            list(rows)

    (query_conn, _), (killer_conn, kill) = issued
    assert kill == f"KILL QUERY {query_conn.thread_id()}"
    assert killer_conn is not query_conn
    source.close()


def test_cancel_without_interrupt_support_only_logs(tmp_path, caplog):
    engine, issued = _driver_engine(tmp_path, with_thread_id=False)
    source = SQLDataSource(engine)
    ctx = ScrapeContext()

    with caplog.at_level(logging.DEBUG, logger="grmon.source"):
        with pytest.raises(ScrapeCancelled):
            with source.query(ctx, "SELECT 1 UNION ALL SELECT 2") as rows:
                ctx.cancel()
                list(rows)

    assert [statement for _, statement in issued] == ["SELECT 1 UNION ALL SELECT 2"]
    assert "can't be interrupted" in caplog.text
    source.close()


def test_primary_scraper_against_sqlite(sqlite_source):
    samples = _scrape(sqlite_source, "innodb_cluster.primary")
    assert [(s.name, s.value) for s in samples] == [("mysql_innodb_cluster_primary", 1.0)]


def test_primary_count_zero_during_election():
    source = SQLDataSource(make_sqlite_engine(primary=None))
    samples = _scrape(source, "innodb_cluster.primary")
    assert [s.value for s in samples] == [0.0]
    source.close()


def test_secondary_scraper_counts_online_only(sqlite_source):
    samples = _scrape(sqlite_source, "innodb_cluster.slave")
    assert [s.value for s in samples] == [2.0]


def test_members_scraper_against_sqlite(sqlite_source):
    samples = _scrape(sqlite_source, "perf_schema.replication_group_member")
    assert [s.label_values for s in samples] == [
        ("m1", "h1", "3306", "ONLINE", "PRIMARY"),
        ("m2", "h2", "3306", "ONLINE", "SECONDARY"),
        ("m3", "h3", "3306", "ONLINE", "SECONDARY"),
        ("m4", "h4", "3306", "RECOVERING", "SECONDARY"),
    ]
    assert {s.value for s in samples} == {1.0}


def test_members_scraper_empty_group():
    source = SQLDataSource(make_sqlite_engine(members=[], primary=None))
    assert _scrape(source, "perf_schema.replication_group_member") == []
    source.close()
