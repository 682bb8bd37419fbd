"""
Common schemas used across multiple endpoints.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: Optional[dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=_utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "error": "NotFoundError",
                "message": "Drug not found: asdfgh",
                "timestamp": "2024-01-15T10:30:00Z"
            }
        }


class HealthResponse(BaseModel):
    """Health check response."""

    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(default_factory=_utcnow)
    cache: dict[str, Any] = Field(
        default_factory=dict,
        description="Cache backend status"
    )
    redis: bool = Field(default=False, description="Redis connection status")
    upstreams: dict[str, str] = Field(
        default_factory=dict,
        description="Circuit breaker state per drug data source"
    )
    uptime_seconds: float = Field(default=0, description="Service uptime")

    class Config:
        json_schema_extra = {
            "example": {
                "service": "MedGuard Interaction Engine",
                "version": "1.0.0",
                "status": "degraded",
                "timestamp": "2024-01-15T10:30:00Z",
                "cache": {"backend": "memory", "entries": 42},
                "redis": False,
                "upstreams": {"rxnorm": "closed", "openfda": "open"},
                "uptime_seconds": 3600.5
            }
        }


class CacheStatsResponse(BaseModel):
    """Cache statistics response."""

    total_entries: int
    drugs: int
    interactions: int
    provider: int
    hits: int = 0
    misses: int = 0
    redis: bool = False
