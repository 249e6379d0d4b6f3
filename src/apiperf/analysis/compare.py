from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping

from apiperf.config import DEFAULT_THRESHOLD_PCT
from apiperf.metrics import NS_PER_SEC, EndpointStatistics, Statistics

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DegradationReport:
    latency_increase: float
    error_rate_increase: float
    throughput_decrease: float
    success_rate_decrease: float

    def exceeds(self, threshold_pct: float) -> bool:
        return (
            self.latency_increase > threshold_pct
            or self.error_rate_increase > threshold_pct
            or self.throughput_decrease > threshold_pct
            or self.success_rate_decrease > threshold_pct
        )


@dataclass(frozen=True, slots=True)
class Comparison:
    current: EndpointStatistics
    previous: EndpointStatistics
    degradation: bool
    changes: DegradationReport


@dataclass(frozen=True, slots=True)
class DegradationVerdict:
    degradation: bool
    threshold_pct: float
    endpoints: Mapping[str, Comparison] = field(default_factory=dict)

    def degraded_endpoints(self) -> list[str]:
        return [key for key, comparison in self.endpoints.items() if comparison.degradation]


def percentage_increase(current: float, previous: float) -> float:
    if previous == 0:
        return 0.0
    return ((current - previous) / previous) * 100


def percentage_decrease(current: float, previous: float) -> float:
    return -percentage_increase(current, previous)


def compare_endpoint(
    current: EndpointStatistics,
    previous: EndpointStatistics,
    threshold_pct: float = DEFAULT_THRESHOLD_PCT,
) -> Comparison:
    changes = DegradationReport(
        latency_increase=percentage_increase(
            current.average_duration / NS_PER_SEC,
            previous.average_duration / NS_PER_SEC,
        ),
        error_rate_increase=percentage_increase(current.failed_requests, previous.failed_requests),
        throughput_decrease=percentage_decrease(current.requests_per_second, previous.requests_per_second),
        success_rate_decrease=percentage_decrease(current.success_rate, previous.success_rate),
    )
    return Comparison(
        current=current,
        previous=previous,
        degradation=changes.exceeds(threshold_pct),
        changes=changes,
    )


def compare_statistics(
    current: Statistics,
    baseline: Statistics,
    threshold_pct: float = DEFAULT_THRESHOLD_PCT,
    log: logging.Logger | None = None,
) -> DegradationVerdict:
    """Compare every endpoint present in both snapshots against ``threshold_pct``."""
    log = log or logger
    shared = [key for key in baseline.endpoint_stats if key in current.endpoint_stats]
    comparisons: dict[str, Comparison] = {}
    for key in shared:
        comparison = compare_endpoint(
            current.endpoint_stats[key],
            baseline.endpoint_stats[key],
            threshold_pct,
        )
        comparisons[key] = comparison
        if comparison.degradation:
            log.warning(
                "Degradation on %s: latency increase %.2f%%, error increase %.2f%%, "
                "throughput decrease %.2f%%, success rate decrease %.2f%%",
                key,
                comparison.changes.latency_increase,
                comparison.changes.error_rate_increase,
                comparison.changes.throughput_decrease,
                comparison.changes.success_rate_decrease,
            )
    skipped = baseline.endpoint_stats.keys() ^ current.endpoint_stats.keys()
    if skipped:
        log.debug("Skipping %d endpoints without a counterpart: %s", len(skipped), sorted(skipped))
    return DegradationVerdict(
        degradation=any(c.degradation for c in comparisons.values()),
        threshold_pct=threshold_pct,
        endpoints=comparisons,
    )
