"""
MedGuard Interaction Engine - application entry point.

FastAPI service that checks drug lists for interactions and grades the
combined risk, optionally personalised with a patient record.
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from medguard.api import api_router
from medguard.config import get_settings
from medguard.core.cache import close_cache_service, get_cache_service
from medguard.core.exceptions import MedGuardError
from medguard.core.logging import correlation_id, get_logger, new_correlation_id, setup_logging
from medguard.core.rate_limit import limiter
from medguard.dependencies import close_dependencies, get_patient_store

setup_logging()
logger = get_logger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Warm the cache and patient snapshot; release HTTP clients on exit."""
    settings = get_settings()
    logger.info(
        f"Starting {settings.APP_NAME} v{settings.APP_VERSION}",
        extra={"debug": settings.DEBUG, "pipeline_timeout_ms": settings.PIPELINE_TIMEOUT_MS}
    )

    cache = await get_cache_service()
    store = get_patient_store()
    logger.info(
        "Dependencies ready",
        extra={"redis_mirror": cache.redis_connected, "patients": len(store)}
    )

    yield

    logger.info("Shutting down")
    await close_dependencies()
    await close_cache_service()


async def correlate_and_time(request: Request, call_next):
    """Tag the request with a correlation id and report its wall time."""
    cid = request.headers.get("X-Request-ID") or new_correlation_id()
    token = correlation_id.set(cid)
    started = time.perf_counter()
    try:
        response = await call_next(request)
    finally:
        correlation_id.reset(token)
    response.headers["X-Request-ID"] = cid
    response.headers["X-Process-Time"] = f"{time.perf_counter() - started:.4f}"
    return response


async def medguard_error_handler(request: Request, exc: MedGuardError) -> JSONResponse:
    logger.warning(
        f"{exc.error_type}: {exc.message}",
        extra={"path": request.url.path, "status_code": exc.status_code}
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={**exc.to_dict(), "timestamp": _now()}
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: log the traceback, return an opaque 500."""
    logger.error(
        f"Unhandled {type(exc).__name__}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=exc
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "InternalServerError",
            "message": "An unexpected error occurred",
            "timestamp": _now(),
        }
    )


def create_application() -> FastAPI:
    """Build the FastAPI app with middleware, error mapping and routes."""
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Drug interaction checks with personalised risk assessment",
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        lifespan=lifespan
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(MedGuardError, medguard_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_ORIGIN],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"]
    )
    app.middleware("http")(correlate_and_time)

    app.include_router(api_router, prefix="/api/v1")

    @app.get("/")
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "check": "/api/v1/interactions/check",
            "health": "/api/v1/health",
        }

    return app


app = create_application()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "medguard.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
