from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from apiperf.config import (
    DEFAULT_THRESHOLD_PCT,
    BenchmarkConfig,
    DataLoadConfig,
    OverflowPolicy,
    RunType,
    UserLoadConfig,
    load_tasks,
)
from apiperf.errors import ApiPerfError
from apiperf.loadgen.ramp import run_data_load, run_user_load
from apiperf.loadgen.runner import Runner
from apiperf.logging_config import setup_logging
from apiperf.metrics import NS_PER_MS, LoadTestStats, Statistics, calculate, calculate_load_test
from apiperf.storage import DEFAULT_DB_PATH, RunRecord, Storage

logger = logging.getLogger("apiperf")


def _ms(duration_ns: int) -> float:
    return duration_ns / NS_PER_MS


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="apiperf",
        description="API performance tester: benchmark, user-load and data-load ramps",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("-f", "--file", required=True, help="JSON file containing endpoints")

    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--test-perf", action="store_true", help="Run standard performance test")
    mode.add_argument("--test-load-user", action="store_true", help="Run user connection load test")
    mode.add_argument("--test-load-data", action="store_true", help="Run data volume load test")

    parser.add_argument("-tc", "--thread-count", type=int, default=1, help="Number of workers")
    parser.add_argument("-rc", "--request-count", type=int, default=1, help="Requests per endpoint")
    parser.add_argument("--timeout", type=float, default=30.0, help="Per-request timeout (seconds)")
    parser.add_argument("--send-body", action="store_true", help="Transmit endpoint bodies")

    parser.add_argument("--start-users", type=int, default=2)
    parser.add_argument("--max-users", type=int, default=50)
    parser.add_argument("--step-users", type=int, default=5)
    parser.add_argument("--step-duration", type=float, default=60.0, help="Seconds per step")
    parser.add_argument(
        "--overflow-policy",
        choices=[p.value for p in OverflowPolicy],
        default=OverflowPolicy.DROP_NEWEST.value,
    )

    parser.add_argument("--initial-data", type=int, default=1000)
    parser.add_argument("--max-data", type=int, default=100000)
    parser.add_argument("--data-multiplier", type=float, default=5.0)
    parser.add_argument("--data-steps", type=int, default=4)

    parser.add_argument("--threshold", type=float, default=DEFAULT_THRESHOLD_PCT, help="Degradation threshold (%%)")
    parser.add_argument("--db", default=str(DEFAULT_DB_PATH), help="History database path")
    parser.add_argument("--no-history", action="store_true", help="Do not read or write run history")

    parser.add_argument("--debug", action="store_true", help="Enable debug-level logging")
    parser.add_argument("--log-file", default=None, help="Optional file to write logs to")
    return parser


def run(args: argparse.Namespace) -> int:
    tasks = load_tasks(args.file)
    config = BenchmarkConfig(
        thread_count=args.thread_count,
        request_count=args.request_count,
        timeout_sec=args.timeout,
        send_body=args.send_body,
    )
    runner = Runner(tasks=tasks, config=config, log=logging.getLogger("apiperf.runner"))
    logger.info("Loaded %d endpoints from %s", len(tasks), args.file)
    storage = None if args.no_history else Storage(Path(args.db))

    if args.test_perf:
        return _run_performance(runner, storage, args.threshold)
    if args.test_load_user:
        user_config = UserLoadConfig(
            start_users=args.start_users,
            max_users=args.max_users,
            step_users=args.step_users,
            duration_per_step_sec=args.step_duration,
            overflow_policy=OverflowPolicy(args.overflow_policy),
        )
        results = asyncio.run(run_user_load(runner, user_config))
        stats = calculate_load_test(results)
        if storage is not None:
            storage.save_load_test(stats, RunType.USER_LOAD, user_config.to_metadata())
        _print_load_summary("User Load Test Summary", stats, "Concurrent Users")
        return 0
    data_config = DataLoadConfig(
        initial_data_size=args.initial_data,
        max_data_size=args.max_data,
        data_size_multiplier=args.data_multiplier,
        steps_count=args.data_steps,
    )
    results = asyncio.run(run_data_load(runner, data_config))
    stats = calculate_load_test(results)
    if storage is not None:
        storage.save_load_test(stats, RunType.DATA_LOAD, data_config.to_metadata())
    _print_load_summary("Data Load Test Summary", stats, "Data Size")
    return 0


def _run_performance(runner: Runner, storage: Storage | None, threshold_pct: float) -> int:
    results = asyncio.run(runner.run())
    statistics = calculate(results)
    _print_statistics(statistics)
    if storage is None:
        return 0
    record = storage.save_results(statistics, threshold_pct, runner.config.to_metadata())
    _print_comparison(record)
    return 1 if record.degradation else 0


def _print_statistics(statistics: Statistics) -> None:
    print("\nPerformance Test Summary")
    print("=======================")
    print(f"Total Requests: {statistics.total_requests}")
    for key, es in sorted(statistics.endpoint_stats.items()):
        print(f"\nEndpoint: {key}")
        print(f"  Requests: {es.total_requests} ({es.success_requests} ok, {es.failed_requests} failed)")
        print(f"  Average Latency: {_ms(es.average_duration):.2f}ms")
        print(f"  P50 Latency: {_ms(es.p50_latency):.2f}ms")
        print(f"  P95 Latency: {_ms(es.p95_latency):.2f}ms")
        print(f"  P99 Latency: {_ms(es.p99_latency):.2f}ms")
        print(f"  Requests/sec: {es.requests_per_second:.2f}")
        print(f"  Success Rate: {es.success_rate:.2f}%")
        codes = ", ".join(f"{code}: {count}" for code, count in sorted(es.status_codes.items()))
        print(f"  Status Codes: {codes or 'none'}")


def _print_comparison(record: RunRecord) -> None:
    if record.verdict is None:
        return
    if not record.verdict.degradation:
        print(f"\nNo degradation against baseline {record.baseline_id}")
        return
    logger.warning("Performance degradation detected!")
    print(f"\nPerformance Comparison (Baseline: {record.baseline_id})")
    for key in record.verdict.degraded_endpoints():
        changes = record.verdict.endpoints[key].changes
        print(f"\nEndpoint: {key}")
        print(f"  Latency Increase: {changes.latency_increase:.2f}%")
        print(f"  Error Rate Increase: {changes.error_rate_increase:.2f}%")
        print(f"  Throughput Decrease: {changes.throughput_decrease:.2f}%")
        print(f"  Success Rate Decrease: {changes.success_rate_decrease:.2f}%")


def _print_load_summary(title: str, stats: LoadTestStats, label: str) -> None:
    print(f"\n{title}")
    print("=" * len(title))
    print(f"Total Duration: {stats.test_duration_sec:.1f}s")
    print(f"Total Requests: {stats.total_requests}")
    print(f"Overall Average Latency: {_ms(stats.average_latency):.2f}ms")
    print(f"Latency Range: {_ms(stats.min_latency):.2f}ms - {_ms(stats.max_latency):.2f}ms\n")
    print("Step-by-Step Results:")
    print("-------------------")
    for step in stats.steps:
        level = step.user_count if label == "Concurrent Users" else step.data_size
        print(f"{label}: {level}")
        print(f"  Average Latency: {_ms(step.average_latency):.2f}ms")
        print(f"  Requests/sec: {step.requests_per_second:.2f}")
        print(f"  Success Rate: {step.success_rate:.2f}%")
        print(f"  Error Rate: {step.error_rate:.2f}%\n")


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    setup_logging(level="DEBUG" if args.debug else "INFO", log_file=args.log_file)
    try:
        code = run(args)
    except ApiPerfError as exc:
        logger.error("%s", exc)
        code = 1
    raise SystemExit(code)


if __name__ == "__main__":
    main()
