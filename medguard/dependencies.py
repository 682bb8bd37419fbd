"""
FastAPI dependency injection utilities.
"""

from typing import Optional

from medguard.agents.drug_normalizer import DrugNormalizer
from medguard.agents.interaction_checker import InteractionChecker
from medguard.agents.orchestrator import InteractionOrchestrator
from medguard.agents.patient_context import PatientContextProvider
from medguard.agents.risk_assessor import RiskAssessor
from medguard.config import get_settings
from medguard.core.cache import CacheService, get_cache_service
from medguard.services.drug_data_provider import DrugDataProvider, RxNormOpenFDAProvider
from medguard.services.patient_store import PatientStore


# Process-wide singletons, created lazily on first request
_provider: Optional[DrugDataProvider] = None
_patient_store: Optional[PatientStore] = None
_orchestrator: Optional[InteractionOrchestrator] = None


async def get_provider() -> DrugDataProvider:
    """Get the shared RxNorm/openFDA provider (owns the pooled HTTP client)."""
    global _provider
    if _provider is None:
        cache = await get_cache_service()
        _provider = RxNormOpenFDAProvider(cache)
    return _provider


def get_patient_store() -> PatientStore:
    """Get the patient snapshot, loaded once from PATIENT_DATA_PATH."""
    global _patient_store
    if _patient_store is None:
        _patient_store = PatientStore.from_file(get_settings().PATIENT_DATA_PATH)
    return _patient_store


def build_orchestrator(
    provider: DrugDataProvider,
    cache: CacheService,
    store: PatientStore,
) -> InteractionOrchestrator:
    """Wire the subagents around one provider, cache and patient store."""
    return InteractionOrchestrator(
        normalizer=DrugNormalizer(provider, cache),
        context_provider=PatientContextProvider(store),
        checker=InteractionChecker(provider, cache),
        assessor=RiskAssessor(),
    )


async def get_orchestrator() -> InteractionOrchestrator:
    """Get the interaction orchestrator instance."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator(
            await get_provider(),
            await get_cache_service(),
            get_patient_store(),
        )
    return _orchestrator


def upstream_status() -> dict[str, str]:
    """Circuit state per upstream source, empty until the provider is first used."""
    if _provider is None or not hasattr(_provider, "circuit_states"):
        return {}
    return _provider.circuit_states()


async def close_dependencies() -> None:
    """Release the provider's HTTP client on shutdown."""
    global _provider, _patient_store, _orchestrator
    if _provider is not None:
        await _provider.close()
    _provider = None
    _patient_store = None
    _orchestrator = None


__all__ = [
    "build_orchestrator",
    "close_dependencies",
    "get_cache_service",
    "get_orchestrator",
    "get_patient_store",
    "get_provider",
    "upstream_status",
]
