from __future__ import annotations

import asyncio
import contextlib
import logging
import random
import time
from dataclasses import dataclass, field

import httpx

from apiperf.config import DataLoadConfig, Task, UserLoadConfig
from apiperf.loadgen.buffer import ResultBuffer
from apiperf.loadgen.client import build_client, send_request
from apiperf.loadgen.runner import Runner
from apiperf.metrics import LoadTestResult


@dataclass(slots=True)
class StepSignal:
    """Cancellation token for one ramp step: a deadline plus an explicit stop."""

    deadline: float
    stop: asyncio.Event = field(default_factory=asyncio.Event)

    def expired(self) -> bool:
        return self.stop.is_set() or asyncio.get_running_loop().time() >= self.deadline

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds, waking early if the step is stopped."""
        if delay <= 0:
            return
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self.stop.wait(), timeout=delay)


@dataclass(slots=True)
class _StepCounters:
    # Mutated only on the event loop thread.
    active_users: int = 0
    total_requests: int = 0


def request_count_for_size(data_size: int) -> int:
    """Per-endpoint request count for a simulated data volume; larger volumes get fewer samples."""
    if data_size < 1000:
        return 100
    if data_size < 10000:
        return 50
    if data_size < 100000:
        return 20
    return 10


def think_time(config: UserLoadConfig, rng: random.Random) -> float:
    """Pause between a virtual user's requests, drawn from ``[min, max)``."""
    span = config.think_time_max_sec - config.think_time_min_sec
    return config.think_time_min_sec + rng.random() * span


async def run_user_load(
    runner: Runner,
    config: UserLoadConfig,
    rng: random.Random | None = None,
) -> list[LoadTestResult]:
    rng = rng or random.Random()
    log = runner.log
    loop = asyncio.get_running_loop()
    steps: list[LoadTestResult] = []
    current_users = config.start_users
    total_steps = config.total_steps
    log.info("Starting user load test with %d steps", total_steps)

    step_number = 0
    while current_users <= config.max_users:
        log.info("Step %d/%d: testing with %d concurrent users", step_number + 1, total_steps, current_users)
        signal = StepSignal(deadline=loop.time() + config.duration_per_step_sec)
        counters = _StepCounters()
        buffer = ResultBuffer(current_users * len(runner.tasks), config.overflow_policy)

        async with buffer:
            monitor = asyncio.create_task(_monitor(counters, config.monitor_interval_sec, log))
            users = [
                asyncio.create_task(
                    _virtual_user(
                        user_id,
                        runner.tasks,
                        config,
                        signal,
                        buffer,
                        counters,
                        rng,
                        runner.transport,
                        log,
                    )
                )
                for user_id in range(current_users)
            ]
            try:
                await signal.sleep(config.duration_per_step_sec)
            finally:
                signal.stop.set()
                outcomes = await asyncio.gather(*users, return_exceptions=True)
                monitor.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await monitor
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome

        step_results = buffer.drain()
        log.info("Step %d completed, collected %d results", step_number + 1, len(step_results))
        if buffer.dropped:
            log.warning(
                "Step %d: %d results dropped by %s overflow policy (capacity %d)",
                step_number + 1,
                buffer.dropped,
                buffer.policy.value,
                buffer.capacity,
            )
        steps.append(
            LoadTestResult(
                results=step_results,
                timestamp=time.time(),
                step_number=step_number,
                user_count=current_users,
                dropped=buffer.dropped,
            )
        )

        if current_users + config.step_users > config.max_users:
            break
        log.info("Cooling down before next step (%.0f seconds)...", config.cooldown_sec)
        await asyncio.sleep(config.cooldown_sec)
        current_users += config.step_users
        step_number += 1

    return steps


async def _virtual_user(
    user_id: int,
    tasks: list[Task],
    config: UserLoadConfig,
    signal: StepSignal,
    buffer: ResultBuffer,
    counters: _StepCounters,
    rng: random.Random,
    transport: httpx.AsyncBaseTransport | None,
    log: logging.Logger,
) -> None:
    async with build_client(1, config.user_timeout_sec, transport) as client:
        counters.active_users += 1
        try:
            await signal.sleep(user_id * config.stagger_sec)
            while not signal.expired():
                task = rng.choice(tasks)
                result = await send_request(client, task, user_id, log)
                if await buffer.offer(result):
                    counters.total_requests += 1
                await signal.sleep(think_time(config, rng))
        finally:
            counters.active_users -= 1


async def _monitor(counters: _StepCounters, interval: float, log: logging.Logger) -> None:
    loop = asyncio.get_running_loop()
    start = loop.time()
    while True:
        await asyncio.sleep(interval)
        elapsed = loop.time() - start
        rps = counters.total_requests / elapsed if elapsed > 0 else 0.0
        log.info(
            "Progress - Active: %d users | Total reqs: %d | RPS: %.2f | Elapsed: %.0fs",
            counters.active_users,
            counters.total_requests,
            rps,
            elapsed,
        )


async def run_data_load(runner: Runner, config: DataLoadConfig) -> list[LoadTestResult]:
    log = runner.log
    steps: list[LoadTestResult] = []
    current_size = config.initial_data_size

    for step_number in range(config.steps_count):
        if current_size > config.max_data_size:
            break
        request_count = request_count_for_size(current_size)
        log.info("Testing with data size: %d records (%d requests per endpoint)", current_size, request_count)
        results = await runner.run(request_count=request_count)
        steps.append(
            LoadTestResult(
                results=results,
                timestamp=time.time(),
                step_number=step_number,
                data_size=current_size,
            )
        )
        current_size = int(current_size * config.data_size_multiplier)
        if step_number + 1 < config.steps_count and current_size <= config.max_data_size:
            log.info("Simulating data growth, cooling down for %.0f seconds...", config.cooldown_sec)
            await asyncio.sleep(config.cooldown_sec)

    return steps
