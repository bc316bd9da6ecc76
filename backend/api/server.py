# api/server.py
# ============================================================================
# HANDMADE STORE BACKEND — FASTAPI SERVER
# ============================================================================
# Checkout, payment webhooks, catalog and order APIs with CORS, request ids,
# uniform error bodies, health probes and rate-limit housekeeping.
# ============================================================================

import asyncio
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api import categories, checkout, orders, products
from api.dependencies import Services
from config import settings
from database import Database, close_database, init_database
from errors import StoreError, ValidationFailed
from logging_config import configure_logging
from tasks.rate_limit_cleanup import rate_limit_cleanup_loop

logger = structlog.get_logger(component="server")


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    uptime_seconds: float
    storage_backend: str
    rate_limit_keys: int


# =============================================================================
# LIFESPAN MANAGEMENT
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic"""
    services: Services = app.state.services
    logger.info("server_starting", version=settings.VERSION, env=settings.ENV,
                storage=services.storage_backend)

    if services.storage_backend == "postgres":
        await init_database()

    cleanup_task = asyncio.create_task(rate_limit_cleanup_loop(services.rate_limiter))

    yield

    logger.info("server_shutting_down")
    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass

    if services.storage_backend == "postgres":
        await close_database()


# =============================================================================
# ERROR RENDERING
# =============================================================================

async def store_error_handler(request: Request, exc: StoreError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {
            "field": ".".join(str(part) for part in err["loc"][1:]) or str(err["loc"][0]),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    return await store_error_handler(request, ValidationFailed(details=details))


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("unhandled_error", path=request.url.path, error=str(exc),
                 error_type=type(exc).__name__, exc_info=exc)
    content = {"error": "Internal server error"}
    if not settings.is_production:
        content["details"] = str(exc)
    return JSONResponse(status_code=500, content=content)


# =============================================================================
# FASTAPI APP
# =============================================================================

def create_app(services: Optional[Services] = None) -> FastAPI:
    configure_logging(settings.ENV, settings.LOG_LEVEL)

    app = FastAPI(
        title="Handmade Store Backend",
        description="Checkout, payment reconciliation and catalog API",
        version=settings.VERSION,
        lifespan=lifespan,
    )
    app.state.services = services or Services.from_settings()
    app.state.started_at = datetime.now(timezone.utc)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_context(request: Request, call_next):
        """Add response timing and request ID headers"""
        request_id = request.headers.get("x-request-id") or str(uuid4())[:8]
        structlog.contextvars.bind_contextvars(request_id=request_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        duration = (time.perf_counter() - start) * 1000
        response.headers["X-Response-Time-Ms"] = f"{duration:.2f}"
        response.headers["X-Request-ID"] = request_id
        return response

    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # =========================================================================
    # HEALTH ENDPOINTS
    # =========================================================================

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request):
        state = request.app.state
        uptime = (datetime.now(timezone.utc) - state.started_at).total_seconds()
        return HealthResponse(
            status="healthy",
            version=settings.VERSION,
            uptime_seconds=uptime,
            storage_backend=state.services.storage_backend,
            rate_limit_keys=len(state.services.rate_limiter),
        )

    @app.get("/ready")
    async def readiness_check(request: Request):
        """Kubernetes readiness probe"""
        if request.app.state.services.storage_backend == "postgres" and not await Database.ping():
            return JSONResponse(status_code=503, content={"ready": False})
        return {"ready": True}

    @app.get("/live")
    async def liveness_check():
        """Kubernetes liveness probe"""
        return {"live": True}

    app.include_router(checkout.router)
    app.include_router(products.router)
    app.include_router(categories.router)
    app.include_router(orders.router)

    return app


app = create_app()


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    uvicorn.run(
        "api.server:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info",
    )
