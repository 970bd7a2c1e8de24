"""
Size expression parsing and the row/batch plan derived from it.

Units are decimal: 1M = 1,000,000 bytes, 1G = 1000M, 1T = 1000G.
Every division rounds up, so the generated database is never smaller than
requested (it can overshoot by less than one row per table).
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from .errors import InvalidConfig, InvalidSizeFormat

BYTES_PER_UNIT = 1000 * 1000
ID_COLUMN_BYTES = 8
# PostgreSQL caps bind parameters per statement at 65535 (one per row here).
MAX_BATCH_SIZE = 65535

SIZE_MULTIPLIERS = {
    "M": 1,
    "G": 1000,
    "T": 1000 * 1000,
}
DEFAULT_MULTIPLIER = SIZE_MULTIPLIERS["G"]


def ceil_div(a: int, b: int) -> int:
    return -(-a // b)


def parse_size(expr: str) -> int:
    """
    '3' / '3G' -> 3 GB, '10M' -> 10 MB, '1T' -> 1 TB. Returns bytes.
    """
    s = expr.strip()
    mul = DEFAULT_MULTIPLIER
    if s and s[-1] in SIZE_MULTIPLIERS:
        mul = SIZE_MULTIPLIERS[s[-1]]
        s = s[:-1]

    if not (s.isascii() and s.isdigit()):
        raise InvalidSizeFormat(f"bad size {expr!r}: expected e.g. 3, 10M, 3G, 1T")

    return int(s) * mul * BYTES_PER_UNIT


@dataclass(frozen=True)
class SizeConfig:
    total_bytes: int
    row_size: int
    threads: int
    batch_size: int

    def validate(self) -> None:
        if self.threads < 1:
            raise InvalidConfig(f"threads must be >= 1 (got {self.threads})")
        if self.row_size <= ID_COLUMN_BYTES:
            raise InvalidConfig(
                f"row size must be > {ID_COLUMN_BYTES} bytes (got {self.row_size})"
            )
        if not 1 <= self.batch_size <= MAX_BATCH_SIZE:
            raise InvalidConfig(
                f"batch size must be in 1..{MAX_BATCH_SIZE} (got {self.batch_size})"
            )
        if self.total_bytes <= 0:
            raise InvalidConfig(f"total size must be > 0 (got {self.total_bytes})")


@dataclass(frozen=True)
class DerivedPlan:
    config: SizeConfig
    per_table_bytes: int
    rows_per_table: int
    batches_per_table: int
    total_batches: int
    last_batch_rows: int

    @property
    def threads(self) -> int:
        return self.config.threads

    @property
    def batch_size(self) -> int:
        return self.config.batch_size

    @property
    def row_size(self) -> int:
        return self.config.row_size

    @property
    def payload_length(self) -> int:
        # 8 bytes of every row come from the id column
        return self.config.row_size - ID_COLUMN_BYTES

    @property
    def total_rows(self) -> int:
        return self.rows_per_table * self.config.threads

    def batch_sizes(self) -> Iterator[int]:
        """Row counts of one table's inserts, in order (last may be short)."""
        for i in range(self.batches_per_table):
            if i == self.batches_per_table - 1:
                yield self.last_batch_rows
            else:
                yield self.config.batch_size

    def table_names(self) -> list[str]:
        return [table_name(i, self.config.threads) for i in range(self.config.threads)]


def table_name(index: int, threads: int = 1) -> str:
    width = max(3, len(str(max(threads - 1, 0))))
    return f"table{index:0{width}d}"


def plan_from_config(cfg: SizeConfig) -> DerivedPlan:
    cfg.validate()

    per_table_bytes = ceil_div(cfg.total_bytes, cfg.threads)
    rows = ceil_div(per_table_bytes, cfg.row_size)
    batches = ceil_div(rows, cfg.batch_size)
    last = rows - (batches - 1) * cfg.batch_size

    return DerivedPlan(
        config=cfg,
        per_table_bytes=per_table_bytes,
        rows_per_table=rows,
        batches_per_table=batches,
        total_batches=cfg.threads * batches,
        last_batch_rows=last,
    )


def plan_run(size_expr: str, threads: int, row_size: int, batch_size: int) -> DerivedPlan:
    return plan_from_config(
        SizeConfig(
            total_bytes=parse_size(size_expr),
            row_size=row_size,
            threads=threads,
            batch_size=batch_size,
        )
    )
