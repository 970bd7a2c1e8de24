"""In-memory stand-in for a psycopg server, shared by the unit tests."""

from __future__ import annotations

import threading

import psycopg
import pytest

from pgbulkgen import db


class FakeCursor:
    def __init__(self, conn: "FakeConnection"):
        self.conn = conn
        self.rowcount = -1

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=None, prepare=None):
        self.rowcount = self.conn._insert(query, list(params or ()), prepare)
        return self


class FakeResult:
    def __init__(self, row):
        self.row = row

    def fetchone(self):
        return self.row


class FakeConnection:
    def __init__(self, server: "FakeServer", dsn: str, autocommit: bool):
        self.server = server
        self.dsn = dsn
        self.autocommit = autocommit
        self.closed = False
        self.ddl: list = []
        self.statements: list = []  # (query, params, prepare) of every INSERT
        self.pending: list[str] = []
        self.committed: list[str] = []
        self.rollbacks = 0

    def cursor(self):
        return FakeCursor(self)

    def execute(self, query, params=None):
        if self.server.fail_ddl is not None and not isinstance(query, str):
            raise self.server.fail_ddl
        self.ddl.append(query)
        return FakeResult((self.server.database_size,))

    def _insert(self, query, params, prepare):
        with self.server.lock:
            self.server.inserts += 1
            n = self.server.inserts
        if self.server.fail_insert_on == n:
            raise self.server.fail_insert_exc
        self.statements.append((query, params, prepare))
        self.pending.extend(params)
        if self.server.short_insert_on == n:
            return len(params) - 1
        return len(params)

    def commit(self):
        self.committed.extend(self.pending)
        self.pending = []

    def rollback(self):
        self.rollbacks += 1
        self.pending = []

    def close(self):
        self.closed = True


class FakeServer:
    def __init__(self):
        self.lock = threading.Lock()
        self.connections: list[FakeConnection] = []
        self.inserts = 0
        self.short_insert_on: int | None = None
        self.fail_insert_on: int | None = None
        self.fail_insert_exc: Exception = psycopg.OperationalError("server closed the connection")
        self.fail_ddl: Exception | None = None
        self.database_size = 12_345_678

    def connect(self, dsn: str, autocommit: bool = False) -> FakeConnection:
        conn = FakeConnection(self, dsn, autocommit)
        with self.lock:
            self.connections.append(conn)
        return conn

    def worker_connections(self) -> list[FakeConnection]:
        # workers are the connections that ran composed DDL (CREATE TABLE)
        return [
            c
            for c in self.connections
            if not c.autocommit and any(not isinstance(q, str) for q in c.ddl)
        ]

    def committed_rows(self) -> int:
        return sum(len(c.committed) for c in self.connections)


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def fake_db(monkeypatch, server):
    """Route pgbulkgen.db.connect to the fake server."""
    monkeypatch.setattr(db, "connect", server.connect)
    return server
