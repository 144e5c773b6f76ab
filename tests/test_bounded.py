import asyncio
import time

import pytest

from tcode_search.bounded import bounded_call, bounded_thread
from tcode_search.errors import ConfigurationAbsent


async def _value(v, delay=0.0):
    if delay:
        await asyncio.sleep(delay)
    return v


async def _raise(exc):
    raise exc


def test_returns_value_within_deadline():
    assert asyncio.run(bounded_call(_value(3), 1.0, 0, "stage")) == 3
    assert asyncio.run(bounded_call(_value(3), None, 0, "stage")) == 3


def test_timeout_returns_fallback_promptly():
    started = time.perf_counter()
    out = asyncio.run(bounded_call(_value("late", delay=2.0), 0.1, "fallback", "slow stage"))
    assert out == "fallback"
    assert time.perf_counter() - started < 1.0


@pytest.mark.parametrize("exc", [RuntimeError("boom"), ConfigurationAbsent("no key"), ValueError("bad")])
def test_errors_return_fallback(exc):
    assert asyncio.run(bounded_call(_raise(exc), 1.0, None, "stage")) is None


def test_callable_fallback_is_fresh_per_call():
    first = asyncio.run(bounded_call(_raise(RuntimeError()), 1.0, list, "stage"))
    second = asyncio.run(bounded_call(_raise(RuntimeError()), 1.0, list, "stage"))
    first.append(1)
    assert second == []


def test_cancellation_propagates():
    async def run():
        task = asyncio.ensure_future(bounded_call(_value(1, delay=5.0), 10.0, 0, "stage"))
        await asyncio.sleep(0.05)
        task.cancel()
        await task

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(run())


def test_bounded_thread_runs_blocking_function():
    def slow(x):
        time.sleep(0.5)
        return x

    assert asyncio.run(bounded_thread(lambda a, b: a + b, 1, 2, timeout=1.0, fallback=0, stage="t")) == 3
    assert asyncio.run(bounded_thread(slow, 1, timeout=0.05, fallback=-1, stage="t")) == -1
