"""API v1 routes."""

from medguard.api.v1 import health, interactions

__all__ = ["health", "interactions"]
