"""
Health and monitoring endpoints.
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from medguard.config import get_settings
from medguard.core.cache import CacheService, get_cache_service
from medguard.dependencies import upstream_status
from medguard.schemas.common import HealthResponse

router = APIRouter()

_started_at = time.monotonic()


@router.get("/health", response_model=HealthResponse)
async def health_check(cache: CacheService = Depends(get_cache_service)):
    """
    Service status, cache backend and upstream circuits.

    Reports ``degraded`` while any upstream circuit is open: checks still
    complete, but from fallbacks rather than live data.
    """
    settings = get_settings()
    upstreams = upstream_status()

    return HealthResponse(
        service=settings.APP_NAME,
        version=settings.APP_VERSION,
        status="degraded" if "open" in upstreams.values() else "healthy",
        timestamp=datetime.now(timezone.utc),
        cache={
            "backend": "redis" if cache.redis_connected else "memory",
            "entries": cache.stats()["total_entries"],
        },
        redis=cache.redis_connected,
        upstreams=upstreams,
        uptime_seconds=round(time.monotonic() - _started_at, 3)
    )


@router.get("/metrics")
async def prometheus_metrics():
    """Prometheus exposition of pipeline, stage, cache and provider metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
