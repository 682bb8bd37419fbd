"""Core modules for the MedGuard Interaction Engine."""

from medguard.core.cache import CacheService, get_cache_service
from medguard.core.exceptions import (
    LogicError,
    MedGuardError,
    NotFoundError,
    PipelineTimeoutError,
    ProviderError,
    ValidationError,
)
from medguard.core.logging import get_logger, setup_logging
from medguard.core.rate_limit import SlidingWindowRateLimiter, limiter

__all__ = [
    "CacheService",
    "get_cache_service",
    "LogicError",
    "MedGuardError",
    "NotFoundError",
    "PipelineTimeoutError",
    "ProviderError",
    "ValidationError",
    "get_logger",
    "setup_logging",
    "SlidingWindowRateLimiter",
    "limiter",
]
