"""
Rate Limit and Security Header Middleware

Counts every request against the per-client fixed window of the
SecurityContext stored on ``app.state.security``.

- Over the limit: 429 with Retry-After
- Blocked at security level critical: 423, processing halted
- Otherwise the request proceeds with X-RateLimit-* headers attached

SecurityHeadersMiddleware adds SECURITY_HEADERS to every response,
including the 429 and 423 answers above.
"""

import math

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from eduguard.core.constants import (
    ERROR_ACCESS_BLOCKED,
    ERROR_RATE_LIMIT_EXCEEDED,
    HEADER_RATE_LIMIT_REMAINING,
    HEADER_RATE_LIMIT_RESET,
    HEADER_RETRY_AFTER,
    HTTP_LOCKED,
    HTTP_TOO_MANY_REQUESTS,
    SECURITY_HEADERS,
)
from eduguard.core.exceptions import RateLimitExceeded, SecurityBlocked
from eduguard.security.rate_limiter import get_client_identifier

EXEMPT_PATHS = frozenset({"/api/health", "/docs", "/redoc", "/openapi.json"})


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply SecurityContext rate limiting to every non-exempt request."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        security = request.app.state.security
        client_id = get_client_identifier(request)
        info = security.check_rate_limit(client_id, endpoint=request.url.path)
        retry_after = str(max(1, math.ceil(info.retry_after)))

        if security.should_halt(client_id):
            exc = SecurityBlocked(
                ERROR_ACCESS_BLOCKED,
                client_id=client_id,
                retry_after=info.retry_after
            )
            return JSONResponse(
                status_code=HTTP_LOCKED,
                content=exc.to_dict(),
                headers={HEADER_RETRY_AFTER: retry_after}
            )

        if info.blocked:
            exc = RateLimitExceeded(ERROR_RATE_LIMIT_EXCEEDED, retry_after=info.retry_after)
            return JSONResponse(
                status_code=HTTP_TOO_MANY_REQUESTS,
                content=exc.to_dict(),
                headers={
                    HEADER_RETRY_AFTER: retry_after,
                    HEADER_RATE_LIMIT_REMAINING: "0",
                    HEADER_RATE_LIMIT_RESET: info.reset_time.isoformat(),
                }
            )

        response = await call_next(request)
        response.headers[HEADER_RATE_LIMIT_REMAINING] = str(info.remaining)
        response.headers[HEADER_RATE_LIMIT_RESET] = info.reset_time.isoformat()
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach the static security headers to every response."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response
