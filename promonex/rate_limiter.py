"""
In-memory rate limiter and concurrency guard.

Two safety mechanisms for the paid vendor calls:
  1. Sliding-window rate limiter per shop + action (thread-safe)
  2. Concurrent job guard for background workflow jobs

State is per process; a restart clears it.
"""

import os
import time
import threading
from typing import Tuple, Dict, List

DEFAULT_MAX_REQUESTS = int(os.environ.get("RATE_LIMIT_MAX_REQUESTS", "30"))
DEFAULT_WINDOW_SECONDS = int(os.environ.get("RATE_LIMIT_WINDOW_SECONDS", "3600"))
MAX_CONCURRENT_JOBS = int(os.environ.get("MAX_CONCURRENT_JOBS", "4"))

_lock = threading.Lock()
_request_log: Dict[str, List[float]] = {}  # "shop:action" → [timestamp, ...]
_active_jobs = 0


def check_rate_limit(
    shop: str,
    action: str,
    max_requests: int = DEFAULT_MAX_REQUESTS,
    window_seconds: int = DEFAULT_WINDOW_SECONDS,
) -> Tuple[bool, int, int]:
    """
    Check and record a request for the given shop and action.

    Returns:
        (allowed, remaining, retry_after_seconds)
    """
    now = time.time()
    window_start = now - window_seconds
    key = f"{shop}:{action}"

    with _lock:
        timestamps = [ts for ts in _request_log.get(key, []) if ts > window_start]

        if len(timestamps) >= max_requests:
            retry_after = int(timestamps[0] + window_seconds - now) + 1
            _request_log[key] = timestamps
            return False, 0, retry_after

        timestamps.append(now)
        _request_log[key] = timestamps
        return True, max_requests - len(timestamps), 0


# ── Concurrent Job Guard ──────────────────────────────────────────────────────

def acquire_job_slot(max_jobs: int = MAX_CONCURRENT_JOBS) -> bool:
    """Try to take a background job slot. False when at capacity."""
    global _active_jobs
    with _lock:
        if _active_jobs >= max_jobs:
            return False
        _active_jobs += 1
        return True


def release_job_slot():
    global _active_jobs
    with _lock:
        _active_jobs = max(0, _active_jobs - 1)


def get_active_jobs() -> int:
    with _lock:
        return _active_jobs


def reset():
    """Forget all recorded requests and jobs."""
    global _active_jobs
    with _lock:
        _request_log.clear()
        _active_jobs = 0


class CapacityError(RuntimeError):
    """No background job slot is free."""
