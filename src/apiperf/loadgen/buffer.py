from __future__ import annotations

import asyncio
import contextlib

from apiperf.config import OverflowPolicy
from apiperf.errors import ConfigurationError
from apiperf.metrics import Result


class ResultBuffer:
    """Bounded multi-producer buffer for one ramp step.

    ``DROP_NEWEST`` discards an incoming result when the buffer is full,
    ``DROP_OLDEST`` evicts the oldest buffered result to make room, and
    ``BLOCK`` makes producers wait while a collector task drains the buffer
    for the lifetime of the ``async with`` block. ``dropped`` counts
    discarded results for both drop policies.
    """

    def __init__(self, capacity: int, policy: OverflowPolicy = OverflowPolicy.DROP_NEWEST) -> None:
        if capacity < 1:
            msg = f"buffer capacity must be >= 1, got {capacity}"
            raise ConfigurationError(msg)
        self.capacity = capacity
        self.policy = policy
        self.dropped = 0
        self._queue: asyncio.Queue[Result] = asyncio.Queue(maxsize=capacity)
        self._collected: list[Result] = []
        self._collector: asyncio.Task[None] | None = None

    async def __aenter__(self) -> ResultBuffer:
        if self.policy is OverflowPolicy.BLOCK:
            self._collector = asyncio.create_task(self._collect())
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        if self._collector is not None:
            self._collector.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._collector
            self._collector = None

    async def offer(self, result: Result) -> bool:
        """Hand a result to the buffer; returns False when it was discarded."""
        if self.policy is OverflowPolicy.BLOCK:
            await self._queue.put(result)
            return True
        try:
            self._queue.put_nowait(result)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            if self.policy is OverflowPolicy.DROP_NEWEST:
                return False
        self._queue.get_nowait()
        self._queue.put_nowait(result)
        return True

    def drain(self) -> list[Result]:
        items, self._collected = self._collected, []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return items

    async def _collect(self) -> None:
        while True:
            self._collected.append(await self._queue.get())
