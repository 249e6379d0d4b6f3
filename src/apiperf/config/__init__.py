from __future__ import annotations

from apiperf.config.models import (
    DEFAULT_THRESHOLD_PCT,
    BenchmarkConfig,
    DataLoadConfig,
    OverflowPolicy,
    RunType,
    Task,
    UserLoadConfig,
    load_tasks,
)

__all__ = [
    "DEFAULT_THRESHOLD_PCT",
    "BenchmarkConfig",
    "DataLoadConfig",
    "OverflowPolicy",
    "RunType",
    "Task",
    "UserLoadConfig",
    "load_tasks",
]
