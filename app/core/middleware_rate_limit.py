from __future__ import annotations

import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from app.core.rate_limit import InMemoryRateLimiter

logger = logging.getLogger(__name__)


class SigningLinkRateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies ONLY to the public signing-link endpoints.
    Those are unauthenticated, so the bucket is keyed by client address:
    it throttles link guessing and repeated sign attempts.
    """

    def __init__(self, app, limiter: InMemoryRateLimiter, path_prefix: str):
        super().__init__(app)
        self.limiter = limiter
        self.path_prefix = path_prefix

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        client_key = request.client.host if request.client else "unknown"
        route_key = f"{request.method.upper()}:{self.path_prefix}"
        if not self.limiter.allow(client_key, route_key):
            wait = self.limiter.retry_after(client_key, route_key)
            logger.warning("signing link rate limited", extra={"client": client_key, "route": route_key})
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many signing link requests; slow down."},
                headers={"Retry-After": str(wait)},
            )
        return await call_next(request)
