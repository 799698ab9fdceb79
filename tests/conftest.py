"""Shared fakes and fixtures for scraper tests."""

from __future__ import annotations

from contextlib import contextmanager

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.pool import StaticPool

from grmon.source import SQLDataSource


class FakeDataSource:
    """In-memory stand-in for SQLDataSource.

    Rows are looked up by exact SQL text, falling back to `rows`. A row that
    is an exception instance gets raised when iteration reaches it, like a
    driver failing mid-stream. Counts every cursor it opens and closes.
    """

    def __init__(self, rows=(), results=None, query_error=None, close_error=None,
                 version=8.0, version_error=None):
        self.rows = list(rows)
        self.results = dict(results or {})
        self.query_error = query_error
        self.close_error = close_error
        self.version = version
        self.version_error = version_error
        self.queries = []
        self.opened = 0
        self.closed = 0

    def _rows(self, ctx, sql):
        for row in self.results.get(sql, self.rows):
            ctx.raise_if_done()
            if isinstance(row, BaseException):
                raise row
            yield tuple(row)

    @contextmanager
    def query(self, ctx, sql):
        ctx.raise_if_done()
        self.queries.append(sql)
        if self.query_error is not None:
            raise self.query_error
        self.opened += 1
        try:
            yield self._rows(ctx, sql)
        except BaseException:
            self.closed += 1
            raise
        else:
            self.closed += 1
            if self.close_error is not None:
                raise self.close_error

    def server_version(self):
        if self.version_error is not None:
            raise self.version_error
        return self.version

    def close(self):
        pass


MEMBERS = [
    ("m1", "h1", 3306, "ONLINE", "PRIMARY"),
    ("m2", "h2", 3306, "ONLINE", "SECONDARY"),
    ("m3", "h3", 3306, "ONLINE", "SECONDARY"),
    ("m4", "h4", 3306, "RECOVERING", "SECONDARY"),
]


def make_sqlite_engine(members=MEMBERS, primary="m1", version="8.0.35-log"):
    """SQLite engine with a performance_schema lookalike attached."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _setup(dbapi_conn, _record):
        dbapi_conn.execute("ATTACH DATABASE ':memory:' AS performance_schema")
        dbapi_conn.create_function("VERSION", 0, lambda: version)

    with engine.begin() as conn:
        conn.exec_driver_sql("""
            CREATE TABLE performance_schema.replication_group_members (
                CHANNEL_NAME TEXT DEFAULT 'group_replication_applier',
                MEMBER_ID TEXT,
                MEMBER_HOST TEXT,
                MEMBER_PORT INTEGER,
                MEMBER_STATE TEXT,
                MEMBER_ROLE TEXT
            )
        """)
        conn.exec_driver_sql("""
            CREATE TABLE performance_schema.global_status (
                VARIABLE_NAME TEXT,
                VARIABLE_VALUE TEXT
            )
        """)
        for member in members:
            conn.exec_driver_sql(
                "INSERT INTO performance_schema.replication_group_members "
                "(MEMBER_ID, MEMBER_HOST, MEMBER_PORT, MEMBER_STATE, MEMBER_ROLE) "
                "VALUES (?, ?, ?, ?, ?)",
                member,
            )
        if primary is not None:
            conn.exec_driver_sql(
                "INSERT INTO performance_schema.global_status VALUES (?, ?)",
                ("group_replication_primary_member", primary),
            )
    return engine


@pytest.fixture
def sqlite_source():
    engine = make_sqlite_engine()
    source = SQLDataSource(engine)
    yield source
    source.close()
