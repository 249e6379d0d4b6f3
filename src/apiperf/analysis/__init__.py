from __future__ import annotations

from apiperf.analysis.compare import (
    Comparison,
    DegradationReport,
    DegradationVerdict,
    compare_endpoint,
    compare_statistics,
    percentage_decrease,
    percentage_increase,
)

__all__ = [
    "Comparison",
    "DegradationReport",
    "DegradationVerdict",
    "compare_endpoint",
    "compare_statistics",
    "percentage_decrease",
    "percentage_increase",
]
