from app.core.config import get_settings
from app.core.logging import configure_logging
from app.core.middleware import RequestIdMiddleware
from app.api.v1.router import v1_router
from app.core.middleware_rate_limit import SigningLinkRateLimitMiddleware
from app.core.rate_limit import InMemoryRateLimiter

from fastapi import FastAPI


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
    )

    # Middleware: public signing link throttle
    limiter = InMemoryRateLimiter(
        capacity=settings.signing_rate_limit_capacity,
        refill_per_sec=settings.signing_rate_limit_per_minute / 60.0,
    )
    app.add_middleware(
        SigningLinkRateLimitMiddleware,
        limiter=limiter,
        path_prefix=f"{settings.api_prefix}/sign/",
    )
    # Middleware: Request ID (added last so it wraps everything)
    app.add_middleware(RequestIdMiddleware, header_name=settings.request_id_header)

    # API v1
    app.include_router(v1_router, prefix=settings.api_prefix)

    return app


app = create_app()
