from __future__ import annotations

"""
Bounded calls: one awaitable, one deadline, one fallback value.

Every call to an external collaborator (models, web providers, stores) goes
through ``bounded_call`` so that timeouts and failures resolve the same way
everywhere: a warning in the log and the stage's fallback value returned to
the caller. Cancellation of the enclosing task is never swallowed.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional, TypeVar, Union

from loguru import logger

from .errors import ConfigurationAbsent, StageTimeout

T = TypeVar("T")

Fallback = Union[T, Callable[[], T]]


def _resolve(fallback):
    return fallback() if callable(fallback) else fallback


async def bounded_call(
    awaitable: Awaitable[T],
    timeout: Optional[float],
    fallback: Fallback,
    stage: str,
) -> T:
    """
    Await ``awaitable`` for at most ``timeout`` seconds.

    On timeout or any exception the fallback is returned (called first if
    it is callable, so mutable defaults are not shared between requests).
    ``timeout=None`` means no deadline.
    """
    started = time.perf_counter()
    try:
        if timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        err = StageTimeout(stage, timeout or 0.0)
        logger.warning("{}: {}; using fallback", stage, err)
    except asyncio.CancelledError:
        raise
    except ConfigurationAbsent as e:
        logger.debug("{}: collaborator not configured ({})", stage, e)
    except Exception as e:
        logger.warning(
            "{} failed after {:.0f} ms: {}: {}; using fallback",
            stage,
            (time.perf_counter() - started) * 1000,
            type(e).__name__,
            e,
        )
    return _resolve(fallback)


async def bounded_thread(
    fn: Callable[..., T],
    *args,
    timeout: Optional[float],
    fallback: Fallback,
    stage: str,
) -> T:
    """``bounded_call`` for a blocking function, run in a worker thread."""
    return await bounded_call(asyncio.to_thread(fn, *args), timeout, fallback, stage)
