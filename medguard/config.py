"""
Configuration management for the MedGuard Interaction Engine.
Uses pydantic-settings for type-safe environment variable handling.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings

_DEFAULT_PATIENT_DATA = Path(__file__).parent / "data" / "patients.json"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "MedGuard Interaction Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    FRONTEND_ORIGIN: str = "http://localhost:3000"

    # Cache (in-memory store, optionally mirrored to Redis)
    REDIS_URL: Optional[str] = None
    CACHE_TTL: int = 86400  # 24 hours
    CACHE_MAX_ENTRIES: int = 1000

    # Drug data providers
    RXNORM_BASE_URL: str = "https://rxnav.nlm.nih.gov/REST"
    OPENFDA_BASE_URL: str = "https://api.fda.gov/drug"
    PROVIDER_TIMEOUT: float = 10.0
    ADVERSE_EVENT_LIMIT: int = 100

    # Outbound rate limiting (requests per window, per source)
    RXNORM_RATE_LIMIT: int = 100
    OPENFDA_RATE_LIMIT: int = 240
    PROVIDER_RATE_WINDOW: float = 60.0  # seconds

    # Circuit breaker
    CIRCUIT_BREAKER_THRESHOLD: int = 5
    CIRCUIT_BREAKER_TIMEOUT: int = 60

    # Connection pooling
    HTTP_POOL_SIZE: int = 20
    HTTP_POOL_KEEPALIVE: int = 30

    # Pipeline
    PIPELINE_TIMEOUT_MS: int = 5000
    MAX_RETRIES: int = 2
    NORMALIZE_TIMEOUT_MS: int = 3000
    INTERACTION_TIMEOUT_MS: int = 3000
    CONTEXT_TIMEOUT_MS: int = 2000
    RISK_TIMEOUT_MS: int = 2000
    MAX_DRUGS: int = 10
    MAX_BATCH_SIZE: int = 20

    # Patient snapshot
    PATIENT_DATA_PATH: str = str(_DEFAULT_PATIENT_DATA)

    # Inbound API rate limiting
    RATE_LIMIT_REQUESTS: int = 100
    RATE_LIMIT_WINDOW: int = 60  # seconds

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
