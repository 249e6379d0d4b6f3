from __future__ import annotations

from hypothesis import given, strategies as st

from apiperf.metrics import (
    MIN_DURATION_SENTINEL_NS,
    NS_PER_MS,
    ErrorType,
    Result,
    calculate,
)

URL = "http://svc.local/items"


def _result(
    ms: float,
    *,
    url: str = URL,
    method: str = "GET",
    status: int = 200,
    error: ErrorType | None = None,
) -> Result:
    return Result(
        url=url,
        method=method,
        status_code=None if error else status,
        duration_ns=int(ms * NS_PER_MS),
        error=error,
        worker_id=0,
        start_time=0.0,
        end_time=ms / 1000,
    )


def test_nearest_rank_percentiles_on_fixed_sample() -> None:
    results = [_result(ms) for ms in reversed(range(10, 1001, 10))]
    es = calculate(results).endpoint_stats[f"GET {URL}"]

    assert es.min_duration == 10 * NS_PER_MS
    assert es.max_duration == 1000 * NS_PER_MS
    assert es.average_duration == 505 * NS_PER_MS
    assert es.median_duration == 510 * NS_PER_MS
    assert es.percentile_95 == 960 * NS_PER_MS
    assert es.percentile_99 == 1000 * NS_PER_MS
    assert es.p50_latency == 510 * NS_PER_MS
    assert es.p95_latency == 960 * NS_PER_MS
    assert es.p99_latency == 1000 * NS_PER_MS


def test_percentiles_on_small_sample() -> None:
    results = [
        Result(URL, "GET", 200, duration_ns=ns, error=None, worker_id=0, start_time=0.0, end_time=0.0)
        for ns in (3, 1, 2)
    ]
    es = calculate(results).endpoint_stats[f"GET {URL}"]
    assert es.average_duration == 2
    assert es.median_duration == 2
    assert es.percentile_95 == 3
    assert es.percentile_99 == 3
    assert es.p50_latency == 2
    assert es.p95_latency == 3
    assert es.p99_latency == 3


def test_average_truncates() -> None:
    results = [
        Result(URL, "GET", 200, duration_ns=ns, error=None, worker_id=0, start_time=0.0, end_time=0.0)
        for ns in (1, 2)
    ]
    assert calculate(results).endpoint_stats[f"GET {URL}"].average_duration == 1


def test_rps_uses_summed_request_duration() -> None:
    es = calculate([_result(250), _result(250)]).endpoint_stats[f"GET {URL}"]
    assert es.requests_per_second == 4.0


def test_failures_excluded_from_latency() -> None:
    results = [_result(100), _result(5000, error=ErrorType.TIMEOUT)]
    es = calculate(results).endpoint_stats[f"GET {URL}"]
    assert es.total_requests == 2
    assert es.success_requests == 1
    assert es.failed_requests == 1
    assert es.max_duration == 100 * NS_PER_MS
    assert es.total_duration == 100 * NS_PER_MS
    assert es.success_rate == 50.0
    assert es.error_rate == 50.0


def test_endpoint_without_successes_is_degenerate() -> None:
    results = [_result(50, error=ErrorType.CONNECT), _result(70, error=ErrorType.TIMEOUT)]
    es = calculate(results).endpoint_stats[f"GET {URL}"]
    assert es.success_requests == 0
    assert es.min_duration == MIN_DURATION_SENTINEL_NS
    assert es.max_duration == 0
    assert es.average_duration == 0
    assert es.median_duration == 0
    assert es.p99_latency == 0
    assert es.requests_per_second == 0.0
    assert es.status_codes == {}


def test_status_code_buckets() -> None:
    results = [
        _result(10, status=200),
        _result(10, status=201),
        _result(10, status=302),
        _result(10, status=404),
        _result(10, status=503),
        _result(10, error=ErrorType.READ),
    ]
    es = calculate(results).endpoint_stats[f"GET {URL}"]
    assert es.status_codes == {200: 1, 201: 1, 302: 1, 404: 1, 503: 1}
    assert es.success_codes == 2
    assert es.client_errors == 1
    assert es.server_errors == 1


def test_grouped_by_method_and_url() -> None:
    results = [_result(10), _result(20, method="POST"), _result(30, method="POST")]
    stats = calculate(results)
    assert set(stats.endpoint_stats) == {f"GET {URL}", f"POST {URL}"}
    assert stats.endpoint_stats[f"GET {URL}"].median_duration == 10 * NS_PER_MS
    assert stats.endpoint_stats[f"POST {URL}"].total_requests == 2
    assert stats.total_duration == 60 * NS_PER_MS


def test_empty_batch() -> None:
    stats = calculate([])
    assert stats.total_requests == 0
    assert stats.endpoint_stats == {}
    assert stats.to_frame().empty


@given(
    st.lists(
        st.tuples(
            st.sampled_from(["http://a.local/", "http://b.local/", "http://c.local/"]),
            st.booleans(),
            st.integers(min_value=1, max_value=10_000),
        ),
        max_size=200,
    )
)
def test_request_totals_balance(samples: list[tuple[str, bool, int]]) -> None:
    results = [
        Result(
            url=url,
            method="GET",
            status_code=200 if ok else None,
            duration_ns=ns,
            error=None if ok else ErrorType.OTHER,
            worker_id=0,
            start_time=0.0,
            end_time=0.0,
        )
        for url, ok, ns in samples
    ]
    stats = calculate(results)
    assert stats.total_requests == len(results)
    assert sum(es.total_requests for es in stats.endpoint_stats.values()) == len(results)
    for es in stats.endpoint_stats.values():
        assert es.total_requests == es.success_requests + es.failed_requests
        if es.success_requests:
            assert es.min_duration <= es.median_duration <= es.max_duration
            assert es.p50_latency <= es.p95_latency <= es.p99_latency
