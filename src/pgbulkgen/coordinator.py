"""
Coordinator: start the producer (pipeline mode) and one worker per table,
follow their status messages, and stop everybody on the first error.

Status messages (status queue, all tasks -> coordinator):
    ("batch", worker_id, rows)   one verified INSERT
    ("done",  worker_id, rows)   task finished (rows=None: stopped by abort)
    ("error", worker_id, exc)    task failed; exc is a BulkGenError
"""

from __future__ import annotations

import multiprocessing
import queue
import sys
import threading
import time
from dataclasses import dataclass

from .config import RunConfig
from .errors import RunAborted, WorkerCrashed
from .pipeline import PRODUCER_ID, drain, producer_proc
from .sizing import DerivedPlan
from .worker import worker_proc


@dataclass(frozen=True)
class RunResult:
    tables: int
    rows_inserted: int
    batches_inserted: int
    duration_seconds: float


@dataclass(frozen=True)
class Backend:
    task: type
    queue_cls: type
    event_cls: type


def get_backend(name: str) -> Backend:
    if name == "thread":
        return Backend(
            task=threading.Thread, queue_cls=queue.Queue, event_cls=threading.Event
        )
    ctx = multiprocessing.get_context()
    return Backend(task=ctx.Process, queue_cls=ctx.Queue, event_cls=ctx.Event)


def _close_queue(q) -> None:
    # multiprocessing queues own a feeder thread; queue.Queue has nothing to close
    if hasattr(q, "join_thread"):
        q.close()
        q.join_thread()


class Coordinator:
    def __init__(
        self, cfg: RunConfig, plan: DerivedPlan, out=None, backend: Backend | None = None
    ):
        self.cfg = cfg
        self.plan = plan
        self.out = out if out is not None else sys.stdout
        self.backend = backend if backend is not None else get_backend(cfg.backend)
        self.producer_reported = False

        self.batches_done = 0
        self.rows_done = 0
        self.errors: list[BaseException] = []

    def _print(self, msg: str) -> None:
        print(msg, file=self.out, flush=True)

    def _progress(self, started: float) -> None:
        total = self.plan.total_batches
        pct = 100.0 * self.batches_done / total if total else 100.0
        self._print(
            f"[progress] {self.batches_done:,}/{total:,} inserts ({pct:.1f}%), "
            f"{self.rows_done:,} rows, {time.monotonic() - started:.1f}s"
        )

    def _start(self, target, args, name: str):
        t = self.backend.task(target=target, args=args, name=name, daemon=False)
        t.start()
        return t

    def run(self) -> RunResult:
        cfg, plan = self.cfg, self.plan
        started = time.monotonic()

        batch_q = self.backend.queue_cls(maxsize=2 * plan.threads)
        status_q = self.backend.queue_cls()
        abort_evt = self.backend.event_cls()

        producer = None
        if cfg.mode == "pipeline":
            producer = self._start(
                producer_proc,
                (plan, cfg.seed, batch_q, status_q, abort_evt),
                "pgbulkgen-producer",
            )

        workers = {
            wid: self._start(
                worker_proc,
                (wid, cfg, plan, batch_q, status_q, abort_evt),
                f"pgbulkgen-{name}",
            )
            for wid, name in enumerate(plan.table_names())
        }

        try:
            self._follow(workers, producer, status_q, abort_evt, started)
        except BaseException:
            abort_evt.set()
            raise
        finally:
            # Abort path and normal path alike: nothing may stay blocked on
            # batch_q, so keep draining it until the producer is gone.
            if self.errors:
                abort_evt.set()
            for t in workers.values():
                while t.is_alive():
                    self._collect_late_errors(status_q)
                    if self.errors:
                        abort_evt.set()
                    t.join(timeout=0.1)
            if producer is not None:
                while producer.is_alive():
                    drain(batch_q)
                    producer.join(timeout=0.1)
            drain(batch_q)
            self._collect_late_errors(status_q)
            _close_queue(batch_q)
            _close_queue(status_q)

        if self.errors:
            raise RunAborted(self.errors) from self.errors[0]

        self._progress(started)
        return RunResult(
            tables=plan.threads,
            rows_inserted=self.rows_done,
            batches_inserted=self.batches_done,
            duration_seconds=time.monotonic() - started,
        )

    def _handle(self, msg, pending: set) -> None:
        kind, wid, payload = msg
        if kind == "batch":
            self.batches_done += 1
            self.rows_done += payload
        elif kind == "done":
            if wid == PRODUCER_ID:
                self.producer_reported = True
            pending.discard(wid)
        elif kind == "error":
            pending.discard(wid)
            if wid == PRODUCER_ID:
                self.producer_reported = True
            self.errors.append(payload)

    def _follow(
        self, workers: dict, producer, status_q, abort_evt, started: float
    ) -> None:
        pending = set(workers)
        last_print = time.monotonic()

        while pending and not self.errors:
            try:
                msg = status_q.get(timeout=self.cfg.progress_interval)
            except queue.Empty:
                self._check_crashed(workers, pending)
                self._check_producer(producer)
            else:
                self._handle(msg, pending)

            now = time.monotonic()
            if now - last_print >= self.cfg.progress_interval:
                self._progress(started)
                last_print = now

        if self.errors:
            abort_evt.set()

    def _check_crashed(self, workers: dict, pending: set) -> None:
        # a killed process never gets to report; threads always report
        for wid in sorted(pending):
            exitcode = getattr(workers[wid], "exitcode", None)
            if exitcode not in (0, None):
                pending.discard(wid)
                self.errors.append(
                    WorkerCrashed(f"worker {wid} exited with code {exitcode}")
                )

    def _check_producer(self, producer) -> None:
        # workers wait on batch_q forever if the producer dies silently
        if producer is None or self.producer_reported:
            return
        exitcode = getattr(producer, "exitcode", None)
        if exitcode not in (0, None):
            self.producer_reported = True
            self.errors.append(WorkerCrashed(f"producer exited with code {exitcode}"))

    def _collect_late_errors(self, status_q) -> None:
        while True:
            try:
                msg = status_q.get_nowait()
            except queue.Empty:
                return
            kind, wid, payload = msg
            if kind == "error":
                self.errors.append(payload)
            elif kind == "batch":
                self.batches_done += 1
                self.rows_done += payload
