from __future__ import annotations

from apiperf.storage.duckdb_store import DEFAULT_DB_PATH, RunRecord, Storage

__all__ = ["DEFAULT_DB_PATH", "RunRecord", "Storage"]
