"""Bounded polling for the harness's suspension points.

The harness never blocks indefinitely. Every wait on an external process
(vault readiness, assignment visibility, platform compliance evaluation) is a
fixed number of attempts separated by a fixed interval. The sleep function is
injectable so tests run without wall-clock delays.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


def attempts_for(timeout_seconds: float, interval_seconds: float) -> int:
    """Convert a max duration into a number of poll attempts (at least 1).

    Args:
        timeout_seconds: Maximum time to spend polling.
        interval_seconds: Fixed wait between attempts.

    Returns:
        Number of attempts.
    """
    if interval_seconds <= 0:
        return 1
    return max(1, int(timeout_seconds // interval_seconds) + 1)


async def poll_until(
    fetch: Callable[[], Awaitable[T | None]],
    *,
    attempts: int,
    interval_seconds: float,
    sleep: SleepFn = asyncio.sleep,
) -> T | None:
    """Call ``fetch`` until it returns a truthy value or attempts run out.

    The first attempt runs immediately; later attempts are preceded by a
    sleep of ``interval_seconds``.

    Args:
        fetch: Async callable returning a value, or None/falsy while not ready.
        attempts: Maximum number of fetch calls.
        interval_seconds: Wait between calls.
        sleep: Sleep coroutine function.

    Returns:
        The first truthy fetch result, or None if none was observed.
    """
    for attempt in range(max(1, attempts)):
        if attempt:
            await sleep(interval_seconds)
        result = await fetch()
        if result:
            return result
    return None
