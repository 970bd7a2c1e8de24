"""
Batch sources for the insert workers.

pipeline: one producer generates table-agnostic batches ahead of time into a
  bounded queue (2 x workers); put() blocks when the queue is full, which is
  what keeps memory flat when generation outruns the database.
direct:   every worker generates its own batch right before each INSERT.

Blocking queue calls poll the abort event so that nobody stays stuck on a
queue whose other end has gone away.
"""

from __future__ import annotations

import queue
import sys

from .errors import Aborted, BulkGenError, PipelineError
from .payload import PayloadGenerator, worker_seed
from .sizing import DerivedPlan

POLL_SECONDS = 0.5
PRODUCER_ID = "producer"


def put_or_abort(q, item, abort_evt, poll: float = POLL_SECONDS) -> bool:
    """Blocking put; returns False (item dropped) once abort_evt is set."""
    while not abort_evt.is_set():
        try:
            q.put(item, timeout=poll)
            return True
        except queue.Full:
            continue
    return False


def get_or_abort(q, abort_evt, poll: float = POLL_SECONDS):
    """Blocking get; raises Aborted once abort_evt is set."""
    while not abort_evt.is_set():
        try:
            return q.get(timeout=poll)
        except queue.Empty:
            continue
    raise Aborted("aborted while waiting for a batch")


def drain(q) -> int:
    n = 0
    while True:
        try:
            q.get_nowait()
        except queue.Empty:
            return n
        n += 1


class DirectBatchSource:
    def __init__(self, gen: PayloadGenerator, payload_length: int):
        self.gen = gen
        self.payload_length = payload_length

    def __call__(self, rows: int) -> list[str]:
        return self.gen.batch(rows, self.payload_length)


class QueueBatchSource:
    """
    Pulls the next shared batch and cuts it to the length this table still
    needs, so per-table row counts stay exact whichever batch a worker gets.
    """

    def __init__(self, batch_q, abort_evt):
        self.batch_q = batch_q
        self.abort_evt = abort_evt

    def __call__(self, rows: int) -> list[str]:
        batch = get_or_abort(self.batch_q, self.abort_evt)
        if batch is None:
            raise PipelineError("producer finished before this table was full")
        if len(batch) < rows:
            raise PipelineError(f"got a batch of {len(batch)} rows, need {rows}")
        return batch[:rows]


# -----------------------------
# Producer
# -----------------------------
def produce_batches(
    gen: PayloadGenerator,
    plan: DerivedPlan,
    batch_q,
    abort_evt,
    consumers: int,
) -> int:
    """Publish plan.total_batches full batches, then one None per consumer."""
    produced = 0
    for _ in range(plan.total_batches):
        rows = gen.batch(plan.batch_size, plan.payload_length)
        if not put_or_abort(batch_q, rows, abort_evt):
            return produced
        produced += 1

    for _ in range(consumers):
        if not put_or_abort(batch_q, None, abort_evt):
            break
    return produced


def producer_proc(
    plan: DerivedPlan,
    base_seed: int | None,
    batch_q,
    status_q,
    abort_evt,
):
    # seeded after the workers' range so no stream is shared
    gen = PayloadGenerator(worker_seed(base_seed, plan.threads))
    try:
        produced = produce_batches(gen, plan, batch_q, abort_evt, plan.threads)
        status_q.put(("done", PRODUCER_ID, produced))
    except Exception as e:
        print(f"[producer] ERROR: {e}", file=sys.stderr)
        if not isinstance(e, BulkGenError):
            e = PipelineError(f"producer failed: {type(e).__name__}: {e}")
        status_q.put(("error", PRODUCER_ID, e))
