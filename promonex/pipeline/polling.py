"""
Polling loop for asynchronous backend jobs (background generation, Remotion
renders, merge-video tasks, final merge).
"""

import os
import time
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


def poll_interval() -> float:
    return float(os.environ.get("POLL_INTERVAL_SECONDS", "3"))


def poll_timeout() -> float:
    return float(os.environ.get("POLL_TIMEOUT_SECONDS", "600"))


async def poll_until(
    fetch: Callable[[], Awaitable[Optional[Any]]],
    is_done: Callable[[Any], bool],
    interval: Optional[float] = None,
    timeout: Optional[float] = None,
    label: str = "task",
) -> Any:
    """
    Call fetch() until is_done(result) holds and return that result.

    A None result is a transient failure (status endpoint unreachable) and
    is retried like any other pending state.

    Raises:
        TimeoutError: the deadline passed first.
    """
    interval = poll_interval() if interval is None else interval
    timeout = poll_timeout() if timeout is None else timeout
    deadline = time.monotonic() + timeout
    attempt = 0

    while True:
        attempt += 1
        result = await fetch()
        if result is not None and is_done(result):
            logger.info(f"{label} finished after {attempt} poll(s)")
            return result

        if result is None:
            logger.warning(f"{label} status unavailable (poll {attempt})")

        if time.monotonic() + interval > deadline:
            raise TimeoutError(f"{label} did not finish within {timeout:.0f}s")
        await asyncio.sleep(interval)
