"""
FastAPI application factory.

* Registers routes for drivers (claim / reject / view, online / offline /
  complete) and admin.
* Starts / stops the background offer-expiry worker via lifespan events.
* Renders typed errors as ``{"code": ..., "message": ...}``.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from orderclaim.api.middleware import limiter
from orderclaim.api.routes import admin, drivers, orders
from orderclaim.config import settings
from orderclaim.domain.errors import ClaimError, Internal
from orderclaim.workers import offer_expiry as _expiry

logging.basicConfig(level=settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the expiry worker on startup; stop on shutdown."""
    await _expiry.start_expiry_loop()
    yield
    await _expiry.stop_expiry_loop()


async def claim_error_handler(request: Request, exc: ClaimError) -> JSONResponse:
    message = Internal.default_message if isinstance(exc, Internal) else exc.message
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": exc.code, "message": message},
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title="Order Claim API",
        description=(
            "Offers delivery orders to several candidate drivers at once and "
            "guarantees that exactly one of them wins.  Concurrent claims "
            "and rejections are serialised by optimistic transactions."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_exception_handler(ClaimError, claim_error_handler)

    # Routers
    app.include_router(orders.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
