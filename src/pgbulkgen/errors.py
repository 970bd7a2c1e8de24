"""
Error types.

Everything here must survive a round trip through pickle: workers report
failures to the coordinator over a multiprocessing queue.
"""

from __future__ import annotations


class BulkGenError(Exception):
    pass


class InvalidSizeFormat(BulkGenError, ValueError):
    pass


class InvalidConfig(BulkGenError, ValueError):
    pass


class ConnectivityFailure(BulkGenError):
    pass


class SchemaFailure(BulkGenError):
    pass


class InsertFailure(BulkGenError):
    pass


class PipelineError(BulkGenError):
    pass


class WorkerCrashed(BulkGenError):
    pass


class RowCountMismatch(BulkGenError):
    def __init__(self, table: str, expected: int, actual: int):
        super().__init__(table, expected, actual)
        self.table = table
        self.expected = expected
        self.actual = actual

    def __str__(self) -> str:
        return (
            f"{self.table}: expected to insert {self.expected} rows, "
            f"but inserted {self.actual}"
        )


class RunAborted(BulkGenError):
    """Raised by the coordinator with every error the tasks reported."""

    def __init__(self, errors: list[BaseException]):
        super().__init__(errors)
        self.errors = list(errors)

    def __str__(self) -> str:
        if not self.errors:
            return "run aborted"
        first = self.errors[0]
        msg = f"run aborted: {type(first).__name__}: {first}"
        if len(self.errors) > 1:
            msg += f" (+{len(self.errors) - 1} more error(s))"
        return msg


class Aborted(BulkGenError):
    """A blocked task noticed the run was aborted by someone else."""
