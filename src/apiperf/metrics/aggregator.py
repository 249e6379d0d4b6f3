from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Sequence

import numpy as np

from apiperf.metrics.models import (
    MIN_DURATION_SENTINEL_NS,
    NS_PER_SEC,
    EndpointStatistics,
    LoadTestResult,
    LoadTestStats,
    Result,
    Statistics,
    StepStatistics,
)


@dataclass(slots=True)
class _EndpointAccumulator:
    method: str
    url: str
    total: int = 0
    success: int = 0
    failed: int = 0
    total_duration: int = 0
    min_duration: int = MIN_DURATION_SENTINEL_NS
    max_duration: int = 0
    durations: list[int] = field(default_factory=list)
    status_codes: Counter[int] = field(default_factory=Counter)
    success_codes: int = 0
    client_errors: int = 0
    server_errors: int = 0

    def add(self, result: Result) -> None:
        self.total += 1
        if not result.success:
            self.failed += 1
            return
        self.success += 1
        self.total_duration += result.duration_ns
        self.durations.append(result.duration_ns)
        if result.duration_ns < self.min_duration:
            self.min_duration = result.duration_ns
        if result.duration_ns > self.max_duration:
            self.max_duration = result.duration_ns
        status = result.status_code or 0
        self.status_codes[status] += 1
        if 200 <= status < 300:
            self.success_codes += 1
        elif 400 <= status < 500:
            self.client_errors += 1
        elif status >= 500:
            self.server_errors += 1


def calculate(results: Iterable[Result]) -> Statistics:
    accumulators: dict[str, _EndpointAccumulator] = {}
    total_requests = 0
    total_duration = 0
    for result in results:
        acc = accumulators.get(result.key)
        if acc is None:
            acc = accumulators[result.key] = _EndpointAccumulator(result.method, result.url)
        acc.add(result)
        total_requests += 1
        if result.success:
            total_duration += result.duration_ns
    return Statistics(
        endpoint_stats={key: _finalize(acc) for key, acc in accumulators.items()},
        total_requests=total_requests,
        total_duration=total_duration,
    )


def _finalize(acc: _EndpointAccumulator) -> EndpointStatistics:
    base = dict(
        method=acc.method,
        url=acc.url,
        total_requests=acc.total,
        success_requests=acc.success,
        failed_requests=acc.failed,
        total_duration=acc.total_duration,
        min_duration=acc.min_duration,
        max_duration=acc.max_duration,
        status_codes=dict(acc.status_codes),
        success_codes=acc.success_codes,
        client_errors=acc.client_errors,
        server_errors=acc.server_errors,
    )
    if not acc.durations:
        return EndpointStatistics(**base)

    durations = np.sort(np.asarray(acc.durations, dtype=np.int64))
    n = len(durations)
    rps = 0.0
    if acc.total_duration > 0:
        rps = acc.success / (acc.total_duration / NS_PER_SEC)
    return EndpointStatistics(
        **base,
        average_duration=acc.total_duration // acc.success,
        median_duration=int(durations[n // 2]),
        percentile_95=_fractional_rank(durations, 0.95),
        percentile_99=_fractional_rank(durations, 0.99),
        p50_latency=_integer_rank(durations, 50),
        p95_latency=_integer_rank(durations, 95),
        p99_latency=_integer_rank(durations, 99),
        requests_per_second=rps,
    )


def _fractional_rank(durations: Sequence[int], fraction: float) -> int:
    return int(durations[int(len(durations) * fraction)])


def _integer_rank(durations: Sequence[int], pct: int) -> int:
    return int(durations[len(durations) * pct // 100])


def calculate_load_test(steps: Iterable[LoadTestResult]) -> LoadTestStats:
    """Reduce per-step results into a ramp summary.

    ``average_latency`` is folded as ``(old + new) // 2`` per step, which
    weights recent steps more heavily than a true running mean.
    """
    step_stats: list[StepStatistics] = []
    total_requests = 0
    average_latency = 0
    min_latency = 0
    max_latency = 0
    first_start: float | None = None
    last_end: float | None = None

    for step in steps:
        stats = calculate(step.results)
        latency = _average_latency(stats)
        success_rate = _success_rate(stats)
        step_stats.append(
            StepStatistics(
                user_count=step.user_count,
                data_size=step.data_size,
                average_latency=latency,
                requests_per_second=sum(es.requests_per_second for es in stats.endpoint_stats.values()),
                success_rate=success_rate,
                error_rate=100 - success_rate,
            )
        )
        total_requests += sum(es.total_requests for es in stats.endpoint_stats.values())

        if min_latency == 0 or latency < min_latency:
            min_latency = latency
        if latency > max_latency:
            max_latency = latency
        if average_latency == 0:
            average_latency = latency
        else:
            average_latency = (average_latency + latency) // 2

        if step.results:
            start = min(r.start_time for r in step.results)
            end = max(r.end_time for r in step.results)
            first_start = start if first_start is None else min(first_start, start)
            last_end = end if last_end is None else max(last_end, end)

    duration = 0.0
    if first_start is not None and last_end is not None:
        duration = max(0.0, last_end - first_start)
    return LoadTestStats(
        steps=step_stats,
        average_latency=average_latency,
        min_latency=min_latency,
        max_latency=max_latency,
        total_requests=total_requests,
        test_duration_sec=duration,
    )


def _average_latency(stats: Statistics) -> int:
    if not stats.endpoint_stats:
        return 0
    total = sum(es.average_duration for es in stats.endpoint_stats.values())
    return total // len(stats.endpoint_stats)


def _success_rate(stats: Statistics) -> float:
    total = sum(es.total_requests for es in stats.endpoint_stats.values())
    if total == 0:
        return 0.0
    success = sum(es.success_requests for es in stats.endpoint_stats.values())
    return success / total * 100
