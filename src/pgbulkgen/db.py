"""
PostgreSQL access: DSN handling, database/table creation, bulk INSERT.

All identifiers go through psycopg.sql.Identifier; row payloads are always
bound as parameters.
"""

from __future__ import annotations

import psycopg
from psycopg import sql
from psycopg.conninfo import make_conninfo

from .errors import ConnectivityFailure, InsertFailure, SchemaFailure


# -----------------------------
# Connection (psql-compatible)
# -----------------------------
def build_libpq_dsn(args) -> str:
    if args.dsn:
        return args.dsn

    parts: list[str] = []
    if args.host:
        parts.append(f"host={args.host}")
    if args.port:
        parts.append(f"port={args.port}")
    if args.user:
        parts.append(f"user={args.user}")
    if args.dbname:
        parts.append(f"dbname={args.dbname}")
    if args.password:
        parts.append(f"password={args.password}")
    if args.sslmode:
        parts.append(f"sslmode={args.sslmode}")
    if args.options:
        parts.append(f"options={args.options}")

    return " ".join(parts) if parts else ""


def psql_equivalent_cmd(args, test_db: str | None = None) -> str:
    cmd = ["psql"]
    if args.host:
        cmd += ["-h", args.host]
    if args.port:
        cmd += ["-p", str(args.port)]
    if args.user:
        cmd += ["-U", args.user]
    dbname = test_db or args.dbname
    if dbname:
        cmd += ["-d", dbname]

    prefix = ""
    if args.password:
        prefix += "PGPASSWORD='***' "
    if args.sslmode:
        prefix += f"PGSSLMODE='{args.sslmode}' "
    if args.options:
        prefix += f"PGOPTIONS='{args.options}' "
    return prefix + " ".join(cmd)


def target_dsn(dsn: str, test_db: str) -> str:
    """Same server/credentials as `dsn`, but connected to `test_db`."""
    return make_conninfo(dsn, dbname=test_db)


def connect(dsn: str, autocommit: bool = False):
    try:
        return psycopg.connect(dsn, autocommit=autocommit)
    except psycopg.Error as e:
        raise ConnectivityFailure(f"cannot connect: {e}") from e


def apply_session_settings(conn, synchronous_commit: bool) -> None:
    try:
        conn.execute("SET client_min_messages=warning")
        if not synchronous_commit:
            conn.execute("SET synchronous_commit=off")
        conn.commit()
    except psycopg.Error as e:
        raise ConnectivityFailure(str(e)) from e


def create_database(dsn: str, test_db: str) -> None:
    """
    Connect to the maintenance database in `dsn`, check the server answers,
    then CREATE DATABASE (which cannot run inside a transaction). Fails before
    any table exists if the new database does not accept connections.
    """
    conn = connect(dsn, autocommit=True)
    try:
        conn.execute("SELECT 1")
        conn.execute(sql.SQL("CREATE DATABASE {}").format(sql.Identifier(test_db)))
    except psycopg.Error as e:
        raise ConnectivityFailure(f"cannot create database {test_db!r}: {e}") from e
    finally:
        conn.close()

    # check connectivity again, now against the new database
    check_connectivity(target_dsn(dsn, test_db))


def check_connectivity(dsn: str) -> None:
    conn = connect(dsn)
    try:
        conn.execute("SELECT 1")
    except psycopg.Error as e:
        raise ConnectivityFailure(f"cannot query: {e}") from e
    finally:
        conn.close()


# -----------------------------
# Schema / DDL
# -----------------------------
def create_table_query(table: str, unlogged: bool = False) -> sql.Composed:
    create_table = "CREATE UNLOGGED TABLE" if unlogged else "CREATE TABLE"
    return sql.SQL(create_table + " {} (id bigserial UNIQUE, data text)").format(
        sql.Identifier(table)
    )


def create_table(conn, table: str, unlogged: bool = False) -> None:
    try:
        conn.execute(create_table_query(table, unlogged))
        conn.commit()
    except psycopg.OperationalError as e:
        raise ConnectivityFailure(f"{table}: {e}") from e
    except psycopg.Error as e:
        raise SchemaFailure(f"cannot create {table}: {e}") from e


# -----------------------------
# Bulk INSERT
# -----------------------------
def insert_query(table: str, rows: int) -> sql.Composed:
    """INSERT INTO <table> (data) VALUES (%s), (%s), ... with `rows` groups."""
    values = sql.SQL(", ").join([sql.SQL("(%s)")] * rows)
    return sql.SQL("INSERT INTO {} (data) VALUES {}").format(
        sql.Identifier(table), values
    )


def execute_insert(conn, query, rows: list[str]) -> int:
    """
    Run a prepared multi-row INSERT; returns the affected row count.
    The caller decides whether to commit.
    """
    try:
        with conn.cursor() as cur:
            cur.execute(query, rows, prepare=True)
            return cur.rowcount
    except psycopg.OperationalError as e:
        raise ConnectivityFailure(str(e)) from e
    except psycopg.Error as e:
        raise InsertFailure(str(e)) from e


# -----------------------------
# Monitoring
# -----------------------------
def database_size_bytes(conn) -> int:
    try:
        row = conn.execute("SELECT pg_database_size(current_database())").fetchone()
    except psycopg.Error as e:
        raise ConnectivityFailure(str(e)) from e
    return int(row[0])
