"""
HTTP plumbing shared by the API: client IP resolution, request IDs,
security headers, request metrics and health checks.
"""

import asyncio
import logging
import time
import uuid
from pathlib import Path
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

from api.database import database
from api.metrics import HTTP_REQUEST_DURATION_SECONDS, HTTP_REQUESTS_TOTAL
from config import ASSETS_DIR, STAGING_DIR, TRUSTED_PROXIES

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
# Upper bound for a client-supplied request ID before we replace it
MAX_REQUEST_ID_LENGTH = 128
HEALTH_CHECK_TIMEOUT = 2.0


def get_real_ip(request: Request) -> str:
    """
    Get the real client IP address, respecting X-Forwarded-For only from trusted proxies.

    Trusting the header from arbitrary clients would let them pick their own
    rate-limit bucket.
    """
    client_ip = get_remote_address(request)

    if TRUSTED_PROXIES and client_ip in TRUSTED_PROXIES:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            # client, proxy1, proxy2, ...
            return forwarded.split(",")[0].strip()

    return client_ip


def get_request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Propagate X-Request-ID, generating a UUID4 when the client sent none."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER, "").strip()
        if not request_id or len(request_id) > MAX_REQUEST_ID_LENGTH:
            request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Frame-Options"] = "SAMEORIGIN"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        response.headers["Content-Security-Policy"] = "default-src 'self'; frame-ancestors 'none'"
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """Record request count and latency per route template."""

    async def dispatch(self, request: Request, call_next):
        start = time.monotonic()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            # Route template, not the raw path, to keep label cardinality bounded
            route = request.scope.get("route")
            endpoint = getattr(route, "path", "unmatched")
            HTTP_REQUESTS_TOTAL.labels(
                method=request.method, endpoint=endpoint, status_code=str(status_code)
            ).inc()
            HTTP_REQUEST_DURATION_SECONDS.labels(method=request.method, endpoint=endpoint).observe(
                time.monotonic() - start
            )


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"error": f"Rate limit exceeded: {exc.detail}"},
    )


def _check_directory_writable(directory: Path) -> bool:
    """Verify a directory exists and accepts a file write."""
    try:
        if not directory.is_dir():
            return False
        probe = directory / f".health_check_{uuid.uuid4().hex}"
        probe.write_text("health check")
        probe.unlink()
        return True
    except OSError:
        return False


async def check_health() -> dict:
    """
    Check the database and the local asset/staging directories.

    Returns a dict with:
        - checks: individual check results
        - healthy: overall health
        - status_code: 200 if healthy, 503 if not
    """
    checks = {
        "database": False,
        "assets_dir": False,
        "staging_dir": False,
    }

    try:
        await database.fetch_one("SELECT 1")
        checks["database"] = True
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")

    for name, directory in (("assets_dir", ASSETS_DIR), ("staging_dir", STAGING_DIR)):
        try:
            checks[name] = await asyncio.wait_for(
                asyncio.to_thread(_check_directory_writable, directory),
                timeout=HEALTH_CHECK_TIMEOUT,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Health check of {name} timed out")

    healthy = all(checks.values())
    return {
        "checks": checks,
        "healthy": healthy,
        "status_code": 200 if healthy else 503,
    }
