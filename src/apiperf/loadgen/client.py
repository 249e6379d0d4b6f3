from __future__ import annotations

import logging
import time

import httpx

from apiperf.config import Task
from apiperf.metrics import ErrorType, Result


def build_client(
    max_connections: int,
    timeout_sec: float,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    if transport is not None:
        return httpx.AsyncClient(transport=transport, timeout=timeout_sec)
    limits = httpx.Limits(
        max_connections=max_connections,
        max_keepalive_connections=max_connections,
    )
    return httpx.AsyncClient(limits=limits, timeout=timeout_sec)


async def send_request(
    client: httpx.AsyncClient,
    task: Task,
    worker_id: int,
    log: logging.Logger,
    send_body: bool = False,
) -> Result:
    start_wall = time.time()
    start_ns = time.perf_counter_ns()
    try:
        resp = await client.request(
            task.method,
            task.url,
            headers=dict(task.headers),
            content=task.body if send_body else None,
        )
        duration_ns = time.perf_counter_ns() - start_ns
        return Result(
            url=task.url,
            method=task.method,
            status_code=resp.status_code,
            duration_ns=duration_ns,
            error=None,
            worker_id=worker_id,
            start_time=start_wall,
            end_time=start_wall + duration_ns / 1e9,
        )
    except httpx.TimeoutException as exc:
        err, message = ErrorType.TIMEOUT, str(exc) or "timeout"
    except httpx.ConnectError as exc:
        err, message = ErrorType.CONNECT, str(exc) or "connection failed"
    except httpx.ReadError as exc:
        err, message = ErrorType.READ, str(exc) or "read failed"
    except httpx.InvalidURL as exc:
        err, message = ErrorType.INVALID, str(exc)
    except httpx.HTTPError as exc:
        err, message = ErrorType.OTHER, str(exc) or type(exc).__name__
    duration_ns = time.perf_counter_ns() - start_ns
    log.debug("worker %d: %s %s failed (%s): %s", worker_id, task.method, task.url, err.value, message)
    return Result(
        url=task.url,
        method=task.method,
        status_code=None,
        duration_ns=duration_ns,
        error=err,
        worker_id=worker_id,
        start_time=start_wall,
        end_time=start_wall + duration_ns / 1e9,
        error_message=message,
    )
