from __future__ import annotations

import asyncio
from collections import Counter

import httpx
from hypothesis import given, strategies as st

from apiperf.analysis import compare_endpoint, compare_statistics, percentage_decrease, percentage_increase
from apiperf.config import BenchmarkConfig, Task
from apiperf.loadgen.runner import Runner
from apiperf.metrics import NS_PER_MS, EndpointStatistics, Statistics, calculate

finite = st.floats(allow_nan=False, allow_infinity=False, min_value=-1e12, max_value=1e12)


@given(finite)
def test_zero_baseline_never_reports_change(current: float) -> None:
    assert percentage_increase(current, 0) == 0.0
    assert percentage_decrease(current, 0) == 0.0


@given(finite, finite.filter(lambda v: v != 0))
def test_decrease_is_negated_increase(current: float, previous: float) -> None:
    assert percentage_decrease(current, previous) == -percentage_increase(current, previous)


def test_percentage_increase() -> None:
    assert percentage_increase(150, 100) == 50.0
    assert percentage_increase(50, 100) == -50.0
    assert percentage_decrease(50, 100) == 50.0


def _endpoint(**overrides: object) -> EndpointStatistics:
    base: dict[str, object] = dict(
        method="GET",
        url="http://svc/a",
        total_requests=10,
        success_requests=10,
        average_duration=500 * NS_PER_MS,
        requests_per_second=2.0,
    )
    base.update(overrides)
    return EndpointStatistics(**base)  # type: ignore[arg-type]


def test_threshold_is_strict() -> None:
    previous = _endpoint()
    current = _endpoint(average_duration=625 * NS_PER_MS)
    at_threshold = compare_endpoint(current, previous, threshold_pct=25.0)
    assert at_threshold.changes.latency_increase == 25.0
    assert not at_threshold.degradation
    assert compare_endpoint(current, previous, threshold_pct=24.999).degradation


def test_error_metric_uses_failure_counts() -> None:
    previous = _endpoint(total_requests=20, success_requests=16, failed_requests=4)
    current = _endpoint(total_requests=20, success_requests=15, failed_requests=5)
    comparison = compare_endpoint(current, previous, threshold_pct=30.0)
    assert comparison.changes.error_rate_increase == 25.0
    assert not comparison.degradation


def test_throughput_drop_degrades() -> None:
    comparison = compare_endpoint(_endpoint(requests_per_second=1.0), _endpoint())
    assert comparison.changes.throughput_decrease == 50.0
    assert comparison.degradation


def test_improvements_are_not_degradation() -> None:
    comparison = compare_endpoint(
        _endpoint(average_duration=100 * NS_PER_MS, requests_per_second=10.0),
        _endpoint(),
    )
    assert comparison.changes.latency_increase < 0
    assert comparison.changes.throughput_decrease < 0
    assert not comparison.degradation


def _stats(*endpoints: EndpointStatistics) -> Statistics:
    return Statistics(
        endpoint_stats={es.key: es for es in endpoints},
        total_requests=sum(es.total_requests for es in endpoints),
        total_duration=0,
    )


def test_one_sided_endpoints_are_skipped() -> None:
    baseline = _stats(_endpoint(), _endpoint(url="http://svc/gone"))
    current = _stats(
        _endpoint(requests_per_second=1.5),
        _endpoint(url="http://svc/new", requests_per_second=0.01),
    )
    verdict = compare_statistics(current, baseline, threshold_pct=10.0)
    assert list(verdict.endpoints) == ["GET http://svc/a"]
    assert verdict.degradation
    assert verdict.degraded_endpoints() == ["GET http://svc/a"]


def test_shared_endpoints_follow_baseline_order() -> None:
    baseline = _stats(*(_endpoint(url=f"http://svc/{name}") for name in "cab"))
    current = _stats(*(_endpoint(url=f"http://svc/{name}") for name in "bad"))
    verdict = compare_statistics(current, baseline)
    assert list(verdict.endpoints) == ["GET http://svc/a", "GET http://svc/b"]
    assert not verdict.degradation


def test_empty_side_yields_no_degradation() -> None:
    verdict = compare_statistics(_stats(), _stats(_endpoint()))
    assert not verdict.degradation
    assert verdict.endpoints == {}


def _run(handler, tasks: list[Task]) -> Statistics:
    runner = Runner(
        tasks=tasks,
        config=BenchmarkConfig(thread_count=4, request_count=10),
        transport=httpx.MockTransport(handler),
    )
    return calculate(asyncio.run(runner.run()))


def test_flaky_endpoint_flagged_against_clean_baseline() -> None:
    tasks = [Task(url="http://svc.local/a"), Task(url="http://svc.local/b")]

    def healthy(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": True})

    calls: Counter[str] = Counter()

    def flaky(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/b":
            calls["b"] += 1
            if calls["b"] % 2:
                raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, json={"ok": True})

    baseline = _run(healthy, tasks)
    current = _run(flaky, tasks)
    assert baseline.total_requests == 20
    assert current.total_requests == 20

    b = current.endpoint_stats["GET http://svc.local/b"]
    assert b.success_requests == 5
    assert b.failed_requests == 5

    verdict = compare_statistics(current, baseline, threshold_pct=10.0)
    comparison = verdict.endpoints["GET http://svc.local/b"]
    # baseline had no failures, so the error delta is guarded to zero
    assert comparison.changes.error_rate_increase == 0.0
    assert comparison.changes.success_rate_decrease == 50.0
    assert comparison.degradation
    assert verdict.degradation
