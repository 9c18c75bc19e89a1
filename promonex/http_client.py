"""
Shared outbound HTTP helpers for every vendor client.

All calls go through httpx.AsyncClient. Retryable failures (429 / 5xx gateway
errors / transport errors) back off exponentially with jitter:
    BASE_DELAY * 2^attempt + random(0, JITTER_MAX)
"""

import os
import time
import random
import asyncio
import logging
from typing import Optional

import httpx

from . import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ──────────────────────────────────────────────────────
DEFAULT_RETRIES = 3
BASE_DELAY = 1.0        # seconds, doubles each retry: 1, 2, 4
JITTER_MAX = 0.5
RETRYABLE_STATUS_CODES = {429, 502, 503, 504}

# Overridden in tests with httpx.MockTransport
_transport: Optional[httpx.AsyncBaseTransport] = None


class UpstreamError(RuntimeError):
    """A third-party service failed or answered with something unusable."""

    def __init__(self, service: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.service = service
        self.status_code = status_code


def async_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout, transport=_transport)


def backend_base() -> str:
    """BACKEND_URL without trailing slash."""
    base = os.environ.get("BACKEND_URL", "").strip()
    if not base:
        raise UpstreamError("backend", "BACKEND_URL is not set in .env")
    return base.rstrip("/")


def read_json(response: httpx.Response, service: str) -> dict:
    """Decode a JSON body; an empty body decodes to {}."""
    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError:
        logger.error(
            f"{service} returned non-JSON (status {response.status_code}): {response.text[:300]}"
        )
        raise UpstreamError(
            service,
            f"{service} returned invalid JSON ({response.status_code})",
            response.status_code,
        )
    return data if isinstance(data, dict) else {"data": data}


def error_message(data: dict, response: httpx.Response, *keys: str) -> str:
    """Pick the first usable error text from a decoded error body."""
    for key in keys or ("error", "message"):
        value = data.get(key)
        if isinstance(value, dict):
            value = value.get("message")
        if value:
            return str(value)
    return response.text[:200] or f"HTTP {response.status_code}"


async def request_with_backoff(
    method: str,
    url: str,
    *,
    service: str,
    timeout: float = 30,
    retries: int = DEFAULT_RETRIES,
    **kwargs,
) -> httpx.Response:
    """
    Make an HTTP request, retrying 429 / 502 / 503 / 504 and transport errors.

    Non-retryable responses are returned as-is so callers can read the vendor's
    error body. After the last retry the final response is returned; if the
    transport never produced one an UpstreamError is raised.
    """
    started = time.monotonic()
    last_error: Optional[Exception] = None

    async with async_client(timeout) as client:
        for attempt in range(retries + 1):
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.HTTPError as e:
                last_error = e
                metrics.inc_counter(f"errors.{service}")
                if attempt >= retries:
                    break
                delay = BASE_DELAY * (2 ** attempt) + random.uniform(0, JITTER_MAX)
                logger.warning(
                    f"{service} request error on attempt {attempt + 1}/{retries + 1}: {e} "
                    f"- retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)
                continue

            if response.status_code not in RETRYABLE_STATUS_CODES or attempt >= retries:
                metrics.record_latency(service, (time.monotonic() - started) * 1000)
                if not response.is_success:
                    metrics.inc_counter(f"errors.{service}")
                return response

            retry_after = response.headers.get("Retry-After")
            if retry_after and retry_after.isdigit():
                delay = int(retry_after)
            else:
                delay = BASE_DELAY * (2 ** attempt) + random.uniform(0, JITTER_MAX)

            logger.warning(
                f"{service} {response.status_code} on attempt {attempt + 1}/{retries + 1} "
                f"- retrying in {delay:.1f}s (url={url})"
            )
            await asyncio.sleep(delay)

    metrics.record_error(service, type(last_error).__name__, str(last_error))
    raise UpstreamError(service, f"{service} request failed: {last_error}")
