"""PROVISIO FastAPI application — entry point for the API server."""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.settings import get_settings
from src.core.constants import APP_VERSION
from src.core.exceptions import ProvisioningError
from src.core.logging import get_logger, setup_logging
from src.data.db import close_engine, get_engine

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup/shutdown lifecycle — initialize DB engine, close on exit."""
    log.info("api_starting")
    await get_engine()
    yield
    await close_engine()
    log.info("api_shutdown")


async def provisioning_error_handler(request: Request, exc: ProvisioningError) -> JSONResponse:
    """Render any domain error as ``{"error": ...}`` with its mapped status."""
    if exc.status_code >= 500:
        log.error(
            "request_failed",
            path=request.url.path,
            code=exc.code,
            error=exc.message,
            context=exc.context,
        )
    else:
        log.info("request_rejected", path=request.url.path, code=exc.code)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.client_message})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Only field locations are logged; submitted values may hold a password.
    fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
    log.info("request_malformed", path=request.url.path, fields=fields)
    return JSONResponse(status_code=400, content={"error": "Malformed request"})


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    settings = get_settings()
    setup_logging()

    app = FastAPI(
        title="PROVISIO API",
        description="Tenant signup, provisioning and accounting connections",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    # CORS: one allow-list for every route
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ProvisioningError, provisioning_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, request_validation_handler)  # type: ignore[arg-type]

    # Register routers
    from src.api.routes.accounting import router as accounting_router
    from src.api.routes.health import router as health_router
    from src.api.routes.signup import router as signup_router
    from src.api.routes.tenants import router as tenants_router
    from src.api.routes.webhooks import router as webhooks_router

    app.include_router(health_router, prefix="/api")
    app.include_router(signup_router, prefix="/api")
    app.include_router(tenants_router, prefix="/api")
    app.include_router(accounting_router, prefix="/api")
    app.include_router(webhooks_router, prefix="/api")

    return app


app = create_app()
