from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from apiperf.errors import ConfigurationError

DEFAULT_THRESHOLD_PCT = 10.0


class RunType(str, Enum):
    PERFORMANCE = "performance"
    USER_LOAD = "user-load"
    DATA_LOAD = "data-load"


class OverflowPolicy(str, Enum):
    DROP_NEWEST = "drop_newest"
    DROP_OLDEST = "drop_oldest"
    BLOCK = "block"


@dataclass(frozen=True, slots=True)
class Task:
    url: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict, hash=False)
    body: bytes | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    @property
    def key(self) -> str:
        return f"{self.method} {self.url}"


@dataclass(frozen=True, slots=True)
class BenchmarkConfig:
    thread_count: int = 1
    request_count: int = 1
    timeout_sec: float = 30.0
    send_body: bool = False

    def __post_init__(self) -> None:
        if self.thread_count < 1:
            msg = f"thread_count must be >= 1, got {self.thread_count}"
            raise ConfigurationError(msg)
        if self.request_count < 1:
            msg = f"request_count must be >= 1, got {self.request_count}"
            raise ConfigurationError(msg)
        if self.timeout_sec <= 0:
            msg = f"timeout_sec must be positive, got {self.timeout_sec}"
            raise ConfigurationError(msg)

    def to_metadata(self) -> Mapping[str, Any]:
        return {
            "thread_count": self.thread_count,
            "request_count": self.request_count,
            "timeout_sec": self.timeout_sec,
            "send_body": self.send_body,
        }


@dataclass(frozen=True, slots=True)
class UserLoadConfig:
    start_users: int = 2
    max_users: int = 50
    step_users: int = 5
    duration_per_step_sec: float = 60.0
    stagger_sec: float = 0.1
    think_time_min_sec: float = 0.1
    think_time_max_sec: float = 1.0
    monitor_interval_sec: float = 5.0
    cooldown_sec: float = 5.0
    user_timeout_sec: float = 10.0
    overflow_policy: OverflowPolicy = OverflowPolicy.DROP_NEWEST

    def __post_init__(self) -> None:
        if self.start_users < 1:
            msg = f"start_users must be >= 1, got {self.start_users}"
            raise ConfigurationError(msg)
        if self.step_users < 1:
            msg = f"step_users must be >= 1, got {self.step_users}"
            raise ConfigurationError(msg)
        if self.max_users < self.start_users:
            msg = f"max_users ({self.max_users}) must be >= start_users ({self.start_users})"
            raise ConfigurationError(msg)
        if self.duration_per_step_sec <= 0:
            msg = f"duration_per_step_sec must be positive, got {self.duration_per_step_sec}"
            raise ConfigurationError(msg)
        if self.think_time_min_sec < 0 or self.think_time_max_sec < self.think_time_min_sec:
            msg = (
                f"think time range [{self.think_time_min_sec}, {self.think_time_max_sec}) "
                "is invalid"
            )
            raise ConfigurationError(msg)
        if self.monitor_interval_sec <= 0:
            msg = f"monitor_interval_sec must be positive, got {self.monitor_interval_sec}"
            raise ConfigurationError(msg)

    @property
    def total_steps(self) -> int:
        return (self.max_users - self.start_users) // self.step_users + 1

    def to_metadata(self) -> Mapping[str, Any]:
        return {
            "start_users": self.start_users,
            "max_users": self.max_users,
            "step_users": self.step_users,
            "duration_per_step_sec": self.duration_per_step_sec,
            "think_time_sec": [self.think_time_min_sec, self.think_time_max_sec],
            "cooldown_sec": self.cooldown_sec,
            "overflow_policy": self.overflow_policy.value,
        }


@dataclass(frozen=True, slots=True)
class DataLoadConfig:
    initial_data_size: int = 1000
    max_data_size: int = 100000
    data_size_multiplier: float = 5.0
    steps_count: int = 4
    cooldown_sec: float = 2.0

    def __post_init__(self) -> None:
        if self.initial_data_size < 1:
            msg = f"initial_data_size must be >= 1, got {self.initial_data_size}"
            raise ConfigurationError(msg)
        if self.data_size_multiplier <= 1.0:
            msg = f"data_size_multiplier must be > 1.0, got {self.data_size_multiplier}"
            raise ConfigurationError(msg)
        if self.steps_count < 1:
            msg = f"steps_count must be >= 1, got {self.steps_count}"
            raise ConfigurationError(msg)

    def to_metadata(self) -> Mapping[str, Any]:
        return {
            "initial_data_size": self.initial_data_size,
            "max_data_size": self.max_data_size,
            "data_size_multiplier": self.data_size_multiplier,
            "steps_count": self.steps_count,
            "cooldown_sec": self.cooldown_sec,
        }


def load_tasks(path: Path | str) -> list[Task]:
    """Read a JSON endpoint list (``[{"url", "method", "headers", "body"}]``) into tasks."""
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        msg = f"failed to read endpoint file {path}: {exc}"
        raise ConfigurationError(msg) from exc
    except json.JSONDecodeError as exc:
        msg = f"failed to parse endpoint file {path}: {exc}"
        raise ConfigurationError(msg) from exc
    if not isinstance(raw, list) or not raw:
        msg = f"no endpoints defined in {path}"
        raise ConfigurationError(msg)
    tasks: list[Task] = []
    for idx, entry in enumerate(raw):
        if not isinstance(entry, dict) or not entry.get("url"):
            msg = f"endpoint #{idx} in {path} has no url"
            raise ConfigurationError(msg)
        tasks.append(_task_from_entry(entry, f"endpoint #{idx} in {path}"))
    return tasks


def _task_from_entry(entry: Mapping[str, Any], where: str) -> Task:
    url = entry["url"]
    method = entry.get("method") or "GET"
    headers = entry.get("headers") or {}
    body = entry.get("body")
    if not isinstance(url, str):
        msg = f"{where}: url must be a string, got {type(url).__name__}"
        raise ConfigurationError(msg)
    if not isinstance(method, str):
        msg = f"{where}: method must be a string, got {type(method).__name__}"
        raise ConfigurationError(msg)
    if not isinstance(headers, dict) or not all(
        isinstance(name, str) and isinstance(value, str) for name, value in headers.items()
    ):
        msg = f"{where}: headers must be an object of string values"
        raise ConfigurationError(msg)
    if body is not None and not isinstance(body, str):
        msg = f"{where}: body must be a string, got {type(body).__name__}"
        raise ConfigurationError(msg)
    return Task(
        url=url,
        method=method.upper(),
        headers=headers,
        body=body.encode("utf-8") if body else None,
    )
