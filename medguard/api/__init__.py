"""API routes for the MedGuard Interaction Engine."""

from fastapi import APIRouter

from medguard.api.v1 import health, interactions

# Create main API router
api_router = APIRouter()

# Include all v1 routes
api_router.include_router(health.router, tags=["health"])
api_router.include_router(interactions.router, tags=["interactions"])

__all__ = ["api_router"]
