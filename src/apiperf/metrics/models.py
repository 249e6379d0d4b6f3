from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Mapping

import pandas as pd

NS_PER_SEC = 1_000_000_000
NS_PER_MS = 1_000_000

# Start value for per-endpoint min duration; one hour, as a duration no
# successful request should reach.
MIN_DURATION_SENTINEL_NS = 3600 * NS_PER_SEC


class ErrorType(str, Enum):
    TIMEOUT = "timeout"
    CONNECT = "connect"
    READ = "read"
    INVALID = "invalid"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class Result:
    url: str
    method: str
    status_code: int | None
    duration_ns: int
    error: ErrorType | None
    worker_id: int
    start_time: float
    end_time: float
    error_message: str | None = None

    @property
    def key(self) -> str:
        return f"{self.method} {self.url}"

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class EndpointStatistics:
    """Latency and throughput rollup for one ``(method, url)`` pair.

    Durations are integer nanoseconds. Latency fields cover successful
    requests only; an endpoint without successes keeps ``min_duration`` at
    ``MIN_DURATION_SENTINEL_NS`` and reports zero for the rest.

    ``requests_per_second`` divides the success count by the *summed*
    per-request duration, so under concurrency it measures throughput of
    work rather than observed wall-clock RPS.

    ``percentile_95``/``percentile_99`` index the sorted sample at
    ``int(n * 0.95)``/``int(n * 0.99)``; ``p50_latency``/``p95_latency``/
    ``p99_latency`` use ``n * pct // 100``. Both sets are kept because
    stored history consumes both and they can differ by one index.
    """

    method: str
    url: str
    total_requests: int = 0
    success_requests: int = 0
    failed_requests: int = 0
    total_duration: int = 0
    average_duration: int = 0
    min_duration: int = MIN_DURATION_SENTINEL_NS
    max_duration: int = 0
    median_duration: int = 0
    percentile_95: int = 0
    percentile_99: int = 0
    p50_latency: int = 0
    p95_latency: int = 0
    p99_latency: int = 0
    requests_per_second: float = 0.0
    status_codes: Mapping[int, int] = field(default_factory=dict)
    success_codes: int = 0
    client_errors: int = 0
    server_errors: int = 0

    @property
    def key(self) -> str:
        return f"{self.method} {self.url}"

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.success_requests / self.total_requests * 100

    @property
    def error_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.failed_requests / self.total_requests * 100

    def to_row(self) -> dict[str, Any]:
        row = asdict(self)
        row["endpoint"] = self.key
        row["status_codes"] = dict(self.status_codes)
        row["success_rate"] = self.success_rate
        row["error_rate"] = self.error_rate
        return row


@dataclass(frozen=True, slots=True)
class Statistics:
    endpoint_stats: Mapping[str, EndpointStatistics]
    total_requests: int
    total_duration: int

    def to_frame(self) -> pd.DataFrame:
        rows = [stat.to_row() for stat in self.endpoint_stats.values()]
        if not rows:
            return pd.DataFrame(columns=["endpoint"])
        return pd.DataFrame(rows)


@dataclass(frozen=True, slots=True)
class LoadTestResult:
    results: list[Result]
    timestamp: float
    step_number: int
    user_count: int = 0
    data_size: int = 0
    dropped: int = 0


@dataclass(frozen=True, slots=True)
class StepStatistics:
    average_latency: int
    requests_per_second: float
    success_rate: float
    error_rate: float
    user_count: int = 0
    data_size: int = 0


@dataclass(frozen=True, slots=True)
class LoadTestStats:
    steps: list[StepStatistics]
    average_latency: int
    min_latency: int
    max_latency: int
    total_requests: int
    test_duration_sec: float
