from __future__ import annotations

from apiperf.metrics.aggregator import calculate, calculate_load_test
from apiperf.metrics.models import (
    MIN_DURATION_SENTINEL_NS,
    NS_PER_MS,
    NS_PER_SEC,
    EndpointStatistics,
    ErrorType,
    LoadTestResult,
    LoadTestStats,
    Result,
    Statistics,
    StepStatistics,
)

__all__ = [
    "MIN_DURATION_SENTINEL_NS",
    "NS_PER_MS",
    "NS_PER_SEC",
    "EndpointStatistics",
    "ErrorType",
    "LoadTestResult",
    "LoadTestStats",
    "Result",
    "Statistics",
    "StepStatistics",
    "calculate",
    "calculate_load_test",
]
