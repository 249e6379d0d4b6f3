from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

import httpx

from apiperf.config import BenchmarkConfig, Task
from apiperf.errors import ConfigurationError
from apiperf.loadgen.client import build_client, send_request
from apiperf.metrics import Result


@dataclass(slots=True)
class Runner:
    """Fixed worker pool: every task is executed ``request_count`` times."""

    tasks: list[Task]
    config: BenchmarkConfig = field(default_factory=BenchmarkConfig)
    transport: httpx.AsyncBaseTransport | None = None
    log: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))
    progress_interval_sec: float = 1.0

    def __post_init__(self) -> None:
        if not self.tasks:
            msg = "no tasks to run"
            raise ConfigurationError(msg)

    @property
    def request_count(self) -> int:
        return self.config.request_count

    async def run(self, request_count: int | None = None) -> list[Result]:
        repetitions = self.config.request_count if request_count is None else request_count
        if repetitions < 1:
            msg = f"request_count must be >= 1, got {repetitions}"
            raise ConfigurationError(msg)
        workers = self.config.thread_count
        total = len(self.tasks) * repetitions
        self.log.info(
            "Starting benchmark with %d workers and %d requests per endpoint (%d endpoints)",
            workers,
            repetitions,
            len(self.tasks),
        )

        work: asyncio.Queue[Task | None] = asyncio.Queue(maxsize=workers)
        results: asyncio.Queue[Result | None] = asyncio.Queue()
        collected: list[Result] = []

        async with build_client(workers, self.config.timeout_sec, self.transport) as client:
            producer = asyncio.create_task(self._produce(work, repetitions, workers))
            pool = [
                asyncio.create_task(self._worker(worker_id, client, work, results))
                for worker_id in range(workers)
            ]
            closer = asyncio.create_task(self._close_when_done(pool, results))
            ticker = asyncio.create_task(self._report_progress(collected, total))
            try:
                while True:
                    result = await results.get()
                    if result is None:
                        break
                    collected.append(result)
                    if not result.success:
                        self.log.error(
                            "Request to %s %s failed: %s",
                            result.method,
                            result.url,
                            result.error_message,
                        )
                await closer
                await producer
            finally:
                pending = [t for t in (ticker, producer, closer, *pool) if not t.done()]
                for t in pending:
                    t.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        self.log.info("Benchmark completed. Total requests processed: %d", len(collected))
        return collected

    async def _produce(self, work: asyncio.Queue[Task | None], repetitions: int, workers: int) -> None:
        for task in self.tasks:
            for _ in range(repetitions):
                await work.put(task)
        for _ in range(workers):
            await work.put(None)

    async def _worker(
        self,
        worker_id: int,
        client: httpx.AsyncClient,
        work: asyncio.Queue[Task | None],
        results: asyncio.Queue[Result | None],
    ) -> None:
        self.log.debug("Worker %d started", worker_id)
        while True:
            task = await work.get()
            if task is None:
                break
            result = await send_request(client, task, worker_id, self.log, self.config.send_body)
            if result.success:
                self.log.debug(
                    "Worker %d: %s %s - status %s in %.2fms",
                    worker_id,
                    task.method,
                    task.url,
                    result.status_code,
                    result.duration_ns / 1e6,
                )
            await results.put(result)
        self.log.debug("Worker %d finished", worker_id)

    async def _close_when_done(
        self,
        pool: list[asyncio.Task[None]],
        results: asyncio.Queue[Result | None],
    ) -> None:
        try:
            await asyncio.gather(*pool)
        finally:
            results.put_nowait(None)

    async def _report_progress(self, collected: list[Result], total: int) -> None:
        while True:
            await asyncio.sleep(self.progress_interval_sec)
            done = len(collected)
            self.log.info(
                "Progress: %.1f%% (%d/%d requests completed)",
                done / total * 100,
                done,
                total,
            )
