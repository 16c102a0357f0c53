"""
FastAPI application factory.

* Registers routes for requests, drivers and admin.
* Starts / stops the targeted-offer expiry worker via lifespan events.
* Applies rate-limiting middleware.
* Maps domain errors onto ``{"detail", "code"}`` JSON responses.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from marketplace.api.middleware import limiter
from marketplace.api.routes import admin, drivers, requests
from marketplace.config import settings
from marketplace.domain.dedup import NotificationDeduper
from marketplace.domain.errors import (
    AlreadyTaken,
    IllegalTransition,
    MarketplaceError,
    NotFound,
    PermissionDenied,
    RequestNotEditable,
    Transient,
)
from marketplace.infrastructure.database import dispose_engine
from marketplace.infrastructure.redis_client import close_redis
from marketplace.workers import target_expiry as _expiry

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    NotFound: 404,
    AlreadyTaken: 409,
    IllegalTransition: 409,
    RequestNotEditable: 409,
    PermissionDenied: 403,
    Transient: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the expiry worker on startup; stop it and close pools on shutdown."""
    await _expiry.start_expiry_loop()
    yield
    await _expiry.stop_expiry_loop()
    await close_redis()
    await dispose_engine()


async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    status = next(
        (code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 500
    )
    if status == 500:
        logger.error("Unmapped domain error on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status,
        content={"detail": exc.user_message, "code": exc.code},
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title="Ride Request Marketplace API",
        description=(
            "Riders post requests; nearby approved drivers see them in real "
            "time and race to accept.  Exactly one driver wins each request, "
            "and the trip then follows a strict lifecycle to settlement."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)

    # Per-process alert dedup and location permission state
    app.state.deduper = NotificationDeduper(settings.dedup_ttl_seconds)
    app.state.location_denied = set()

    # Routers
    app.include_router(requests.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
