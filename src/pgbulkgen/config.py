from __future__ import annotations

from dataclasses import dataclass

from .errors import InvalidConfig

MODES = ("pipeline", "direct")
BACKENDS = ("process", "thread")


@dataclass(frozen=True)
class RunConfig:
    """Everything a run needs; built once from the command line."""

    dsn: str
    test_db: str
    size: str = "1G"
    threads: int = 1
    batch_size: int = 4000
    row_size: int = 2048
    mode: str = "pipeline"
    backend: str = "process"
    seed: int | None = None
    unlogged: bool = False
    synchronous_commit: bool = False
    progress_interval: float = 2.0

    def validate(self) -> None:
        if not self.test_db:
            raise InvalidConfig("please provide a test database name (--test-db)")
        if self.mode not in MODES:
            raise InvalidConfig(f"mode must be one of {MODES} (got {self.mode!r})")
        if self.backend not in BACKENDS:
            raise InvalidConfig(
                f"backend must be one of {BACKENDS} (got {self.backend!r})"
            )
        if self.progress_interval <= 0:
            raise InvalidConfig("progress interval must be > 0")
