"""
Shared-secret authentication for the embedded app's server.

All /api/* and /workflow/* endpoints require a valid X-App-Secret header
matching APP_SHARED_SECRET. The Shopify app's server attaches this header
together with X-Shopify-Shop-Domain when forwarding merchant requests.
"""

import os
import secrets
from fastapi import Header, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

PROTECTED_PREFIXES = ("/api/", "/workflow/")


class AppAuthMiddleware(BaseHTTPMiddleware):
    """Reject unauthenticated requests to /api/* and /workflow/* endpoints."""

    # Paths that are always public (health checks, etc.)
    PUBLIC_PATHS = {"/health", "/metrics", "/docs", "/openapi.json", "/redoc"}

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if path in self.PUBLIC_PATHS or not path.startswith(PROTECTED_PREFIXES):
            return await call_next(request)

        secret = os.environ.get("APP_SHARED_SECRET", "")
        if not secret:
            # In development without the secret set, allow all traffic
            if os.environ.get("ENVIRONMENT", "development") == "development":
                return await call_next(request)
            return JSONResponse(status_code=500, content={"detail": "APP_SHARED_SECRET not configured"})

        # Constant-time compare avoids timing attacks
        provided = request.headers.get("X-App-Secret", "")
        if not secrets.compare_digest(provided, secret):
            return JSONResponse(status_code=401, content={"detail": "Invalid or missing app secret"})

        return await call_next(request)


def require_shop(x_shopify_shop_domain: str = Header(default="")) -> str:
    """FastAPI dependency: the authenticated shop's myshopify domain."""
    shop = x_shopify_shop_domain.strip().lower()
    if not shop:
        raise HTTPException(status_code=401, detail="Missing X-Shopify-Shop-Domain header")
    return shop
