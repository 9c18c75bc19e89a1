"""Exception → HTTP status mapping and rate limiting shared by all routers."""

import logging

from fastapi import HTTPException

from . import metrics, rate_limiter
from .http_client import UpstreamError
from .rate_limiter import CapacityError

logger = logging.getLogger(__name__)


def to_http_exception(e: Exception, context: str) -> HTTPException:
    """
    ValueError → 400, PermissionError → 403, LookupError → 404,
    UpstreamError → 502, CapacityError → 503, TimeoutError → 504,
    anything else → 500 (logged with traceback).
    """
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, PermissionError):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, LookupError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, UpstreamError):
        logger.warning(f"{context}: {e.service} error: {e}")
        metrics.record_error(e.service, "UpstreamError", str(e))
        return HTTPException(status_code=502, detail=str(e))
    if isinstance(e, CapacityError):
        return HTTPException(status_code=503, detail=str(e))
    if isinstance(e, TimeoutError):
        return HTTPException(status_code=504, detail=str(e))

    logger.error(f"{context} failed: {e}", exc_info=True)
    metrics.record_error(context, type(e).__name__, str(e))
    return HTTPException(status_code=500, detail=str(e))


def enforce_rate_limit(shop: str, action: str):
    """Count one request for shop + action; 429 with Retry-After when over the limit."""
    metrics.inc_counter(f"requests.{action}")
    allowed, _remaining, retry_after = rate_limiter.check_rate_limit(shop, action)
    if not allowed:
        metrics.inc_counter(f"rate_limited.{action}")
        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded. Try again in {retry_after}s.",
            headers={"Retry-After": str(retry_after)},
        )
