from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import duckdb
import pandas as pd

from apiperf.analysis import DegradationVerdict, compare_statistics
from apiperf.config import DEFAULT_THRESHOLD_PCT, RunType
from apiperf.errors import BaselineError
from apiperf.metrics import EndpointStatistics, LoadTestStats, Statistics

DEFAULT_DB_PATH = Path(".apiperf/history.duckdb")

ENDPOINT_COLUMNS = [
    "run_id",
    "endpoint",
    "method",
    "url",
    "total_requests",
    "success_requests",
    "failed_requests",
    "total_duration",
    "average_duration",
    "min_duration",
    "max_duration",
    "median_duration",
    "percentile_95",
    "percentile_99",
    "p50_latency",
    "p95_latency",
    "p99_latency",
    "requests_per_second",
    "status_codes",
    "success_codes",
    "client_errors",
    "server_errors",
]

_INT_FIELDS = [c for c in ENDPOINT_COLUMNS[4:] if c not in ("requests_per_second", "status_codes")]


@dataclass(frozen=True, slots=True)
class RunRecord:
    run_id: str
    created_at: datetime
    statistics: Statistics
    baseline_id: str | None = None
    verdict: DegradationVerdict | None = None

    @property
    def degradation(self) -> bool:
        return self.verdict is not None and self.verdict.degradation


@dataclass(slots=True)
class Storage:
    db_path: Path
    log: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))

    def __post_init__(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> duckdb.DuckDBPyConnection:
        return duckdb.connect(str(self.db_path))

    def _init_schema(self) -> None:
        with self._connect() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS run_meta (
                    run_id TEXT PRIMARY KEY,
                    created_at TIMESTAMP,
                    run_type TEXT,
                    config_json TEXT,
                    baseline_id TEXT,
                    degradation BOOLEAN,
                    threshold_pct DOUBLE
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS endpoint_stats (
                    run_id TEXT,
                    endpoint TEXT,
                    method TEXT,
                    url TEXT,
                    total_requests BIGINT,
                    success_requests BIGINT,
                    failed_requests BIGINT,
                    total_duration BIGINT,
                    average_duration BIGINT,
                    min_duration BIGINT,
                    max_duration BIGINT,
                    median_duration BIGINT,
                    percentile_95 BIGINT,
                    percentile_99 BIGINT,
                    p50_latency BIGINT,
                    p95_latency BIGINT,
                    p99_latency BIGINT,
                    requests_per_second DOUBLE,
                    status_codes TEXT,
                    success_codes BIGINT,
                    client_errors BIGINT,
                    server_errors BIGINT
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS comparisons (
                    run_id TEXT,
                    endpoint TEXT,
                    degradation BOOLEAN,
                    latency_increase DOUBLE,
                    error_rate_increase DOUBLE,
                    throughput_decrease DOUBLE,
                    success_rate_decrease DOUBLE
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS load_steps (
                    run_id TEXT,
                    step_number INTEGER,
                    user_count INTEGER,
                    data_size BIGINT,
                    average_latency BIGINT,
                    requests_per_second DOUBLE,
                    success_rate DOUBLE,
                    error_rate DOUBLE
                );
                """
            )

    def save_results(
        self,
        statistics: Statistics,
        threshold_pct: float = DEFAULT_THRESHOLD_PCT,
        config: Mapping[str, Any] | None = None,
    ) -> RunRecord:
        """Store a performance run, comparing it against the latest stored one first."""
        baseline_id: str | None = None
        verdict: DegradationVerdict | None = None
        previous = self.load_latest()
        if previous is not None:
            baseline_id, baseline = previous
            verdict = compare_statistics(statistics, baseline, threshold_pct, self.log)
        else:
            self.log.info("No baseline found; skipping degradation comparison")

        record = RunRecord(
            run_id=_new_run_id(),
            created_at=_utcnow(),
            statistics=statistics,
            baseline_id=baseline_id,
            verdict=verdict,
        )
        with self._connect() as con:
            con.begin()
            try:
                self._insert_run(con, record, threshold_pct, config)
            except duckdb.Error:
                con.rollback()
                raise
            con.commit()
        self.log.info(
            "Saved run %s (%d endpoints, baseline=%s)",
            record.run_id,
            len(statistics.endpoint_stats),
            baseline_id or "none",
        )
        return record

    def _insert_run(
        self,
        con: duckdb.DuckDBPyConnection,
        record: RunRecord,
        threshold_pct: float,
        config: Mapping[str, Any] | None,
    ) -> None:
        statistics, verdict = record.statistics, record.verdict
        con.execute(
            "INSERT INTO run_meta VALUES (?, ?, ?, ?, ?, ?, ?)",
            [
                record.run_id,
                record.created_at,
                RunType.PERFORMANCE.value,
                json.dumps(dict(config or {})),
                record.baseline_id,
                record.degradation,
                threshold_pct,
            ],
        )
        if statistics.endpoint_stats:
            stats_df = statistics.to_frame().assign(
                run_id=record.run_id,
                status_codes=lambda df: df["status_codes"].map(_codes_json),
            )[ENDPOINT_COLUMNS]
            con.execute("INSERT INTO endpoint_stats SELECT * FROM stats_df")
        if verdict is not None and verdict.endpoints:
            cmp_df = pd.DataFrame(
                [
                    {
                        "run_id": record.run_id,
                        "endpoint": key,
                        "degradation": c.degradation,
                        "latency_increase": c.changes.latency_increase,
                        "error_rate_increase": c.changes.error_rate_increase,
                        "throughput_decrease": c.changes.throughput_decrease,
                        "success_rate_decrease": c.changes.success_rate_decrease,
                    }
                    for key, c in verdict.endpoints.items()
                ]
            )
            con.execute("INSERT INTO comparisons SELECT * FROM cmp_df")

    def save_load_test(
        self,
        stats: LoadTestStats,
        run_type: RunType,
        config: Mapping[str, Any] | None = None,
    ) -> str:
        if run_type is RunType.PERFORMANCE:
            msg = f"invalid load test type: {run_type.value}"
            raise ValueError(msg)
        run_id = _new_run_id()
        steps_df = pd.DataFrame(
            [
                {
                    "run_id": run_id,
                    "step_number": idx,
                    "user_count": s.user_count,
                    "data_size": s.data_size,
                    "average_latency": s.average_latency,
                    "requests_per_second": s.requests_per_second,
                    "success_rate": s.success_rate,
                    "error_rate": s.error_rate,
                }
                for idx, s in enumerate(stats.steps)
            ]
        )
        with self._connect() as con:
            con.begin()
            try:
                con.execute(
                    "INSERT INTO run_meta VALUES (?, ?, ?, ?, ?, ?, ?)",
                    [run_id, _utcnow(), run_type.value, json.dumps(dict(config or {})), None, False, None],
                )
                if not steps_df.empty:
                    con.execute("INSERT INTO load_steps SELECT * FROM steps_df")
            except duckdb.Error:
                con.rollback()
                raise
            con.commit()
        self.log.info("Saved %s run %s (%d steps)", run_type.value, run_id, len(stats.steps))
        return run_id

    def load_latest(self) -> tuple[str, Statistics] | None:
        """Latest stored performance run as ``(run_id, statistics)``, or None when there is none."""
        with self._connect() as con:
            row = con.execute(
                "SELECT run_id FROM run_meta WHERE run_type = ? ORDER BY created_at DESC LIMIT 1",
                [RunType.PERFORMANCE.value],
            ).fetchone()
            if not row:
                return None
            run_id = row[0]
            df = con.execute(
                "SELECT * FROM endpoint_stats WHERE run_id = ?",
                [run_id],
            ).fetchdf()
        return run_id, _statistics_from_frame(run_id, df)

    def list_runs(self) -> pd.DataFrame:
        with self._connect() as con:
            return con.execute(
                "SELECT run_id, created_at, run_type, baseline_id, degradation "
                "FROM run_meta ORDER BY created_at DESC"
            ).fetchdf()

    def load_endpoint_stats(self, run_id: str) -> pd.DataFrame:
        with self._connect() as con:
            return con.execute(
                "SELECT * FROM endpoint_stats WHERE run_id = ? ORDER BY endpoint",
                [run_id],
            ).fetchdf()

    def load_comparisons(self, run_id: str) -> pd.DataFrame:
        with self._connect() as con:
            return con.execute(
                "SELECT * FROM comparisons WHERE run_id = ? ORDER BY endpoint",
                [run_id],
            ).fetchdf()

    def endpoint_history(self, endpoint: str | None = None) -> pd.DataFrame:
        """Per-endpoint trend across performance runs, oldest first.

        One row per (run, endpoint) with latencies in milliseconds, RPS,
        request count and error rate (percent). Pass ``endpoint`` as
        ``"METHOD url"`` to restrict the series to a single endpoint.
        """
        query = """
            SELECT
                m.run_id,
                m.created_at,
                e.endpoint,
                e.total_requests,
                e.average_duration / 1e6 AS avg_latency_ms,
                e.p50_latency / 1e6 AS p50_latency_ms,
                e.p95_latency / 1e6 AS p95_latency_ms,
                e.p99_latency / 1e6 AS p99_latency_ms,
                e.requests_per_second AS rps,
                CASE WHEN e.total_requests = 0 THEN 0.0
                     ELSE e.failed_requests * 100.0 / e.total_requests END AS error_rate
            FROM endpoint_stats e
            JOIN run_meta m ON e.run_id = m.run_id
            WHERE m.run_type = ?
        """
        params: list[Any] = [RunType.PERFORMANCE.value]
        if endpoint is not None:
            query += " AND e.endpoint = ?"
            params.append(endpoint)
        query += " ORDER BY m.created_at, e.endpoint"
        with self._connect() as con:
            return con.execute(query, params).fetchdf()

    def load_steps(self, run_id: str) -> pd.DataFrame:
        with self._connect() as con:
            return con.execute(
                "SELECT * FROM load_steps WHERE run_id = ? ORDER BY step_number",
                [run_id],
            ).fetchdf()


def _new_run_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _codes_json(codes: Mapping[int, int]) -> str:
    return json.dumps({str(code): count for code, count in codes.items()})


def _statistics_from_frame(run_id: str, df: pd.DataFrame) -> Statistics:
    endpoint_stats: dict[str, EndpointStatistics] = {}
    try:
        for row in df.to_dict(orient="records"):
            codes = json.loads(row["status_codes"] or "{}")
            es = EndpointStatistics(
                method=str(row["method"]),
                url=str(row["url"]),
                requests_per_second=float(row["requests_per_second"]),
                status_codes={int(code): int(count) for code, count in codes.items()},
                **{name: int(row[name]) for name in _INT_FIELDS},
            )
            endpoint_stats[es.key] = es
    except (KeyError, TypeError, ValueError) as exc:
        msg = f"stored baseline {run_id} is corrupt: {exc}"
        raise BaselineError(msg) from exc
    return Statistics(
        endpoint_stats=endpoint_stats,
        total_requests=sum(es.total_requests for es in endpoint_stats.values()),
        total_duration=sum(es.total_duration for es in endpoint_stats.values()),
    )
