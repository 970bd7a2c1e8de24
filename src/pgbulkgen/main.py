#!/usr/bin/env python3
"""
pgbulkgen

Empty server -> CREATE DATABASE -> one table per worker -> fill to ~target size
with random text rows, using verified multi-row INSERTs.

Sizing (decimal units): --size 3G with --threads 4 and --row-size-bytes 2048
gives 750,000,000 bytes per table = 366,211 rows per table (rounded up).
8 bytes of every row are the bigserial id; the rest is a random
alphanumeric payload.

Modes:
- pipeline (default): one producer generates batches into a bounded queue
  (2 x threads) that all workers draw from; generation overlaps inserts.
- direct: every worker generates each batch itself right before inserting.

Every INSERT must report exactly as many rows as it sent; anything else stops
the whole run. Nothing is retried and nothing is cleaned up.

psql-compatible flags:
- -h host, -p port, -U user, -d dbname (the database to connect to for
  CREATE DATABASE, e.g. postgres)
(argparse help is remapped to --help / -?)

Usage:
  pgbulkgen -h localhost -U postgres -d postgres --test-db filler --size 10G --threads 8

"""

from __future__ import annotations

import argparse
import os
import sys

from . import db
from .config import BACKENDS, MODES, RunConfig
from .coordinator import Coordinator
from .errors import (
    BulkGenError,
    ConnectivityFailure,
    InvalidConfig,
    InvalidSizeFormat,
    RunAborted,
)
from .sizing import DerivedPlan, plan_run


def build_parser() -> argparse.ArgumentParser:
    # argparse default -h conflicts with psql's -h(host).
    ap = argparse.ArgumentParser(
        prog="pgbulkgen",
        description="Create a database and fill it with ~N bytes of random rows.",
        add_help=False,
    )
    ap.add_argument(
        "--help", "-?", action="help", help="show this help message and exit"
    )

    # Connection (psql-compatible)
    ap.add_argument(
        "--dsn",
        default=os.environ.get("PG_DSN"),
        help="libpq DSN of the server (maintenance db). Overrides -h/-p/-U/-d.",
    )
    ap.add_argument(
        "-h",
        "--host",
        default=None,
        help="database server host or socket directory (psql compatible).",
    )
    ap.add_argument(
        "-p",
        "--port",
        type=int,
        default=None,
        help="database server port (psql compatible).",
    )
    ap.add_argument(
        "-U", "--user", default=None, help="database user name (psql compatible)."
    )
    ap.add_argument(
        "-d",
        "--dbname",
        default=None,
        help="database to connect to for CREATE DATABASE (psql compatible).",
    )
    ap.add_argument(
        "--password",
        default=None,
        help="database password (or use PGPASSWORD env / .pgpass).",
    )
    ap.add_argument(
        "--sslmode", default=None, help="sslmode (require, verify-full, etc.)."
    )
    ap.add_argument(
        "--options",
        default=None,
        help='libpq options string (e.g., "-c statement_timeout=0").',
    )
    ap.add_argument(
        "--print-psql",
        action="store_true",
        help="Print the psql command for the generated database and exit.",
    )

    # Target
    ap.add_argument("--test-db", default="", help="Database to create (required).")
    ap.add_argument(
        "--size",
        default="1G",
        help="Database size to generate ('3' or '3G' => 3GB, '10M' => 10MB, '1T' => 1TB).",
    )
    ap.add_argument(
        "--threads",
        type=int,
        default=1,
        help="Number of workers; each one fills its own table.",
    )
    ap.add_argument(
        "--bulk-count",
        type=int,
        default=4000,
        help="Number of rows to insert per query.",
    )
    ap.add_argument(
        "--row-size-bytes", type=int, default=2048, help="Row size in bytes."
    )

    # Execution
    ap.add_argument(
        "--mode",
        choices=MODES,
        default="pipeline",
        help="pipeline: shared producer + bounded queue; direct: workers generate their own rows.",
    )
    ap.add_argument(
        "--backend",
        choices=BACKENDS,
        default="process",
        help="Run workers as processes (default) or threads.",
    )
    ap.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Base RNG seed (worker i uses seed+i). Default: OS entropy.",
    )
    ap.add_argument(
        "--unlogged",
        action="store_true",
        help="Create UNLOGGED tables (faster, not crash safe).",
    )
    ap.add_argument(
        "--synchronous-commit",
        action="store_true",
        help="Keep synchronous_commit on (default turns it off for the workers).",
    )
    ap.add_argument(
        "--progress-interval",
        type=float,
        default=2.0,
        help="Seconds between progress prints.",
    )
    return ap


def config_from_args(args) -> RunConfig:
    cfg = RunConfig(
        dsn=db.build_libpq_dsn(args),
        test_db=args.test_db,
        size=args.size,
        threads=args.threads,
        batch_size=args.bulk_count,
        row_size=args.row_size_bytes,
        mode=args.mode,
        backend=args.backend,
        seed=args.seed,
        unlogged=args.unlogged,
        synchronous_commit=args.synchronous_commit,
        progress_interval=args.progress_interval,
    )
    cfg.validate()
    return cfg


def describe_plan(plan: DerivedPlan) -> str:
    return (
        f"[plan] {plan.threads} table(s) x {plan.rows_per_table:,} rows "
        f"({plan.row_size} bytes each) = {plan.per_table_bytes:,} bytes per table; "
        f"{plan.batches_per_table:,} inserts per table "
        f"(last one {plan.last_batch_rows:,} rows), {plan.total_batches:,} total"
    )


def report_size(cfg: RunConfig) -> None:
    conn = db.connect(db.target_dsn(cfg.dsn, cfg.test_db))
    try:
        size = db.database_size_bytes(conn)
    finally:
        conn.close()
    print(f"[done] database {cfg.test_db} is {size / 1e6:,.1f} MB on disk")


def main(argv: list[str] | None = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)

    if args.print_psql:
        print(db.psql_equivalent_cmd(args, test_db=args.test_db or None))
        return 0

    try:
        cfg = config_from_args(args)
        plan = plan_run(cfg.size, cfg.threads, cfg.row_size, cfg.batch_size)
    except (InvalidSizeFormat, InvalidConfig) as e:
        print(f"[error] {e}", file=sys.stderr)
        return 2

    print(describe_plan(plan))

    try:
        print(f"[setup] creating database {cfg.test_db}...")
        db.create_database(cfg.dsn, cfg.test_db)
    except ConnectivityFailure as e:
        print(f"[error] {e}", file=sys.stderr)
        return 1

    print(
        f"[setup] starting {cfg.threads} worker(s), mode={cfg.mode}, "
        f"backend={cfg.backend}"
    )
    try:
        result = Coordinator(cfg, plan).run()
    except RunAborted as e:
        print(f"[error] {e}", file=sys.stderr)
        print(
            f"[error] database {cfg.test_db} left as is (partially filled)",
            file=sys.stderr,
        )
        return 1

    print(
        f"[done] inserted {result.rows_inserted:,} rows into {result.tables} table(s) "
        f"in {result.duration_seconds:.1f}s"
    )
    try:
        report_size(cfg)
    except BulkGenError as e:
        print(f"[warn] could not read database size: {e}", file=sys.stderr)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
