"""
One insert worker per table.

The worker creates its table, then walks the plan's batch schedule: get a
batch, run the prepared multi-row INSERT, check rowcount, commit. A short
rowcount is fatal: the batch is rolled back and the worker stops.
"""

from __future__ import annotations

import sys
from collections.abc import Callable

from . import db
from .config import RunConfig
from .errors import Aborted, BulkGenError, RowCountMismatch
from .payload import PayloadGenerator, worker_seed
from .pipeline import DirectBatchSource, QueueBatchSource
from .sizing import DerivedPlan


class BulkInsertWorker:
    def __init__(
        self,
        conn,
        table: str,
        plan: DerivedPlan,
        unlogged: bool = False,
        abort_evt=None,
    ):
        self.conn = conn
        self.table = table
        self.plan = plan
        self.unlogged = unlogged
        self.abort_evt = abort_evt
        self.rows_inserted = 0
        # rows -> statement; one for full batches, one for the remainder
        self._queries: dict = {}

    def create_table(self) -> None:
        db.create_table(self.conn, self.table, unlogged=self.unlogged)

    def query_for(self, rows: int):
        q = self._queries.get(rows)
        if q is None:
            q = self._queries[rows] = db.insert_query(self.table, rows)
        return q

    def insert(self, rows: list[str]) -> None:
        affected = db.execute_insert(self.conn, self.query_for(len(rows)), rows)
        if affected != len(rows):
            self.conn.rollback()
            raise RowCountMismatch(self.table, len(rows), affected)
        self.conn.commit()
        self.rows_inserted += len(rows)

    def _aborted(self) -> bool:
        return self.abort_evt is not None and self.abort_evt.is_set()

    def run(
        self,
        next_batch: Callable[[int], list[str]],
        on_batch: Callable[[int], None] | None = None,
    ) -> int:
        """
        Insert this table's whole schedule; returns rows inserted.
        Returns early (short) if the abort event gets set.
        """
        # the full-batch statement is built (and prepared on first use) once
        self.query_for(self.plan.batch_size)

        for n in self.plan.batch_sizes():
            if self._aborted():
                break
            self.insert(next_batch(n))
            if on_batch is not None:
                on_batch(n)
        return self.rows_inserted


# -----------------------------
# Process / thread entry point
# -----------------------------
def worker_proc(
    worker_id: int,
    cfg: RunConfig,
    plan: DerivedPlan,
    batch_q,
    status_q,
    abort_evt,
):
    table = plan.table_names()[worker_id]
    conn = None
    try:
        conn = db.connect(db.target_dsn(cfg.dsn, cfg.test_db))
        db.apply_session_settings(conn, cfg.synchronous_commit)

        worker = BulkInsertWorker(
            conn, table, plan, unlogged=cfg.unlogged, abort_evt=abort_evt
        )
        worker.create_table()

        if cfg.mode == "pipeline":
            source = QueueBatchSource(batch_q, abort_evt)
        else:
            gen = PayloadGenerator(worker_seed(cfg.seed, worker_id))
            source = DirectBatchSource(gen, plan.payload_length)

        rows = worker.run(source, on_batch=lambda n: status_q.put(("batch", worker_id, n)))
        status_q.put(("done", worker_id, rows))

    except Aborted:
        status_q.put(("done", worker_id, None))
    except Exception as e:
        print(f"[worker {worker_id}] ERROR: {e}", file=sys.stderr)
        if not isinstance(e, BulkGenError):
            e = BulkGenError(f"{table}: {type(e).__name__}: {e}")
        status_q.put(("error", worker_id, e))
    finally:
        if conn is not None:
            conn.close()
