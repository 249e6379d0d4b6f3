from __future__ import annotations

import asyncio

import pytest

from apiperf.config import OverflowPolicy
from apiperf.errors import ConfigurationError
from apiperf.loadgen.buffer import ResultBuffer
from apiperf.metrics import Result


def _result(n: int) -> Result:
    return Result(
        url=f"http://svc.local/{n}",
        method="GET",
        status_code=200,
        duration_ns=n,
        error=None,
        worker_id=0,
        start_time=0.0,
        end_time=0.0,
    )


def _offer_all(buffer: ResultBuffer, items: list[Result]) -> tuple[list[bool], list[Result]]:
    async def go() -> list[bool]:
        async with buffer:
            return [await buffer.offer(item) for item in items]

    accepted = asyncio.run(go())
    return accepted, buffer.drain()


def test_drop_newest_rejects_when_full() -> None:
    items = [_result(n) for n in range(3)]
    buffer = ResultBuffer(2, OverflowPolicy.DROP_NEWEST)
    accepted, drained = _offer_all(buffer, items)
    assert accepted == [True, True, False]
    assert drained == items[:2]
    assert buffer.dropped == 1


def test_drop_oldest_evicts_head() -> None:
    items = [_result(n) for n in range(4)]
    buffer = ResultBuffer(2, OverflowPolicy.DROP_OLDEST)
    accepted, drained = _offer_all(buffer, items)
    assert accepted == [True] * 4
    assert drained == items[2:]
    assert buffer.dropped == 2


def test_block_keeps_everything_in_order() -> None:
    items = [_result(n) for n in range(10)]
    buffer = ResultBuffer(2, OverflowPolicy.BLOCK)
    accepted, drained = _offer_all(buffer, items)
    assert all(accepted)
    assert drained == items
    assert buffer.dropped == 0


def test_drain_empties_buffer() -> None:
    buffer = ResultBuffer(4)
    _offer_all(buffer, [_result(1)])
    assert buffer.drain() == []


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ConfigurationError):
        ResultBuffer(0)
