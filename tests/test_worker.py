import queue
import threading

import psycopg
import pytest

from pgbulkgen import db
from pgbulkgen.config import RunConfig
from pgbulkgen.errors import (
    ConnectivityFailure,
    InsertFailure,
    RowCountMismatch,
    SchemaFailure,
)
from pgbulkgen.payload import PayloadGenerator
from pgbulkgen.pipeline import DirectBatchSource
from pgbulkgen.sizing import plan_run
from pgbulkgen.worker import BulkInsertWorker, worker_proc


@pytest.fixture
def plan():
    # 5000 rows per table: batches of 3000 + 2000
    return plan_run("1M", threads=2, row_size=100, batch_size=3000)


def direct_source(plan, seed=1):
    return DirectBatchSource(PayloadGenerator(seed=seed), plan.payload_length)


def test_create_table(server, plan):
    conn = server.connect("")
    BulkInsertWorker(conn, "table001", plan, unlogged=True).create_table()
    assert conn.ddl == [db.create_table_query("table001", unlogged=True)]


def test_create_table_failure(server, plan):
    server.fail_ddl = psycopg.errors.DuplicateTable("relation exists")
    conn = server.connect("")
    with pytest.raises(SchemaFailure):
        BulkInsertWorker(conn, "table000", plan).create_table()


def test_run_fills_table_exactly(server, plan):
    conn = server.connect("")
    worker = BulkInsertWorker(conn, "table000", plan)
    seen = []

    rows = worker.run(direct_source(plan), on_batch=seen.append)

    assert rows == plan.rows_per_table == 5000
    assert seen == [3000, 2000]
    assert len(conn.committed) == 5000
    assert all(len(r) == plan.payload_length for r in conn.committed)


def test_full_and_remainder_statements(server, plan):
    conn = server.connect("")
    BulkInsertWorker(conn, "table000", plan).run(direct_source(plan))

    (q1, p1, prep1), (q2, p2, prep2) = conn.statements
    assert q1 == db.insert_query("table000", 3000)
    assert q2 == db.insert_query("table000", 2000)
    assert len(p1) == 3000 and len(p2) == 2000
    assert prep1 is True and prep2 is True


def test_full_statement_is_reused(server):
    plan = plan_run("1M", threads=1, row_size=100, batch_size=1000)
    conn = server.connect("")
    worker = BulkInsertWorker(conn, "table000", plan)
    worker.run(direct_source(plan))

    assert len(conn.statements) == 10
    assert all(q is conn.statements[0][0] for q, _, _ in conn.statements)


def test_rowcount_mismatch_rolls_back_and_stops(server, plan):
    server.short_insert_on = 1
    conn = server.connect("")
    worker = BulkInsertWorker(conn, "table000", plan)

    with pytest.raises(RowCountMismatch) as ei:
        worker.run(direct_source(plan))

    err = ei.value
    assert (err.table, err.expected, err.actual) == ("table000", 3000, 2999)
    assert conn.rollbacks == 1
    assert conn.committed == []
    assert len(conn.statements) == 1
    assert worker.rows_inserted == 0


def test_insert_server_error(server, plan):
    server.fail_insert_on = 2
    server.fail_insert_exc = psycopg.errors.UniqueViolation("duplicate key")
    conn = server.connect("")
    with pytest.raises(InsertFailure):
        BulkInsertWorker(conn, "table000", plan).run(direct_source(plan))
    assert len(conn.committed) == 3000


def test_insert_connection_lost(server, plan):
    server.fail_insert_on = 1
    conn = server.connect("")
    with pytest.raises(ConnectivityFailure):
        BulkInsertWorker(conn, "table000", plan).run(direct_source(plan))


def test_run_stops_when_aborted(server, plan):
    conn = server.connect("")
    evt = threading.Event()
    worker = BulkInsertWorker(conn, "table000", plan, abort_evt=evt)
    assert worker.run(direct_source(plan), on_batch=lambda n: evt.set()) == 3000
    assert len(conn.statements) == 1


def make_cfg(**kw):
    base = dict(dsn="host=db user=bench dbname=postgres", test_db="filler")
    base.update(kw)
    return RunConfig(**base)


def test_worker_proc_direct(fake_db, plan):
    status_q = queue.Queue()
    worker_proc(1, make_cfg(mode="direct", seed=3), plan, None, status_q, threading.Event())

    msgs = [status_q.get_nowait() for _ in range(status_q.qsize())]
    assert msgs == [("batch", 1, 3000), ("batch", 1, 2000), ("done", 1, 5000)]

    (conn,) = fake_db.connections
    assert "dbname=filler" in conn.dsn
    assert "host=db" in conn.dsn
    assert conn.closed
    assert db.create_table_query("table001") in conn.ddl
    assert "SET synchronous_commit=off" in conn.ddl
    assert len(conn.committed) == 5000


def test_worker_proc_pipeline_takes_from_queue(fake_db, plan):
    batch_q, status_q = queue.Queue(), queue.Queue()
    full = ["x" * plan.payload_length] * plan.batch_size
    batch_q.put(full)
    batch_q.put(full)
    worker_proc(0, make_cfg(), plan, batch_q, status_q, threading.Event())

    assert status_q.queue[-1] == ("done", 0, 5000)
    assert batch_q.empty()


def test_worker_proc_reports_mismatch(fake_db, plan):
    fake_db.short_insert_on = 2
    status_q = queue.Queue()
    worker_proc(0, make_cfg(mode="direct"), plan, None, status_q, threading.Event())

    kind, wid, err = status_q.queue[-1]
    assert (kind, wid) == ("error", 0)
    assert isinstance(err, RowCountMismatch)
    assert fake_db.connections[0].closed


def test_worker_proc_connect_failure(monkeypatch, plan):
    def refuse(dsn, autocommit=False):
        raise ConnectivityFailure("connection refused")

    monkeypatch.setattr(db, "connect", refuse)
    status_q = queue.Queue()
    worker_proc(0, make_cfg(mode="direct"), plan, None, status_q, threading.Event())

    kind, _, err = status_q.get_nowait()
    assert kind == "error"
    assert isinstance(err, ConnectivityFailure)


def test_worker_proc_stopped_by_abort(fake_db, plan):
    evt = threading.Event()
    evt.set()
    status_q = queue.Queue()
    worker_proc(0, make_cfg(), plan, queue.Queue(), status_q, evt)
    assert status_q.get_nowait() == ("done", 0, 0)
