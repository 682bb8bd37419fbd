"""
Pytest fixtures for MedGuard Interaction Engine tests.
"""

import asyncio
from collections import Counter
from typing import Any, Optional

import pytest
from fastapi.testclient import TestClient

# Set environment variables before imports
import os
os.environ["REDIS_URL"] = ""
os.environ["DEBUG"] = "true"

from medguard.config import Settings
from medguard.core.cache import CacheService, get_cache_service
from medguard.core.exceptions import ProviderError
from medguard.dependencies import build_orchestrator, get_orchestrator
from medguard.main import app
from medguard.services.drug_data_provider import DrugDataProvider
from medguard.services.patient_store import PatientStore


# name -> (rxcui, brand names)
DRUG_CATALOG = {
    "warfarin": ("11289", ["Coumadin", "Jantoven"]),
    "aspirin": ("1191", ["Bayer"]),
    "sertraline": ("36437", ["Zoloft"]),
    "tramadol": ("10689", ["Ultram"]),
    "ibuprofen": ("5640", ["Advil", "Motrin"]),
    "naproxen": ("7258", ["Aleve"]),
    "acetaminophen": ("161", ["Tylenol"]),
    "amoxicillin": ("723", ["Amoxil"]),
    "cephalexin": ("2231", ["Keflex"]),
    "loratadine": ("28889", ["Claritin"]),
    "cetirizine": ("20610", ["Zyrtec"]),
    "metformin": ("6809", ["Glucophage"]),
}

SPELLING = {
    "aspirn": "aspirin",
    "warfarn": "warfarin",
}


class FakeDrugDataProvider(DrugDataProvider):
    """
    In-memory RxNorm/openFDA stand-in.

    ``rxnorm_down``/``openfda_down`` fail every call to that source;
    ``rxnorm_failures`` fails only the next N RxNorm calls. ``delays`` maps a
    sorted drug pair to seconds slept before answering the adverse event
    query, and ``events`` maps a sorted pair to an openFDA event payload.
    """

    def __init__(self):
        self.calls: Counter = Counter()
        self.rxnorm_down = False
        self.openfda_down = False
        self.rxnorm_failures = 0
        self.delays: dict[tuple[str, str], float] = {}
        self.events: dict[tuple[str, str], dict[str, Any]] = {}
        self.labels: dict[tuple[str, str], list[str]] = {}
        self.closed = False

    def _rxnorm(self, method: str) -> None:
        self.calls[method] += 1
        if self.rxnorm_down:
            raise ProviderError("rxnorm request failed: connection refused")
        if self.rxnorm_failures > 0:
            self.rxnorm_failures -= 1
            raise ProviderError("rxnorm returned HTTP 503")

    def _openfda(self, method: str) -> None:
        self.calls[method] += 1
        if self.openfda_down:
            raise ProviderError("openfda returned HTTP 503")

    @staticmethod
    def _rxcui_for(name: str) -> Optional[str]:
        entry = DRUG_CATALOG.get(name.strip().lower())
        return entry[0] if entry else None

    @staticmethod
    def _name_for(rxcui: str) -> Optional[str]:
        for name, (cui, _) in DRUG_CATALOG.items():
            if cui == rxcui:
                return name
        return None

    async def normalize_approximate(self, name: str) -> dict[str, Any]:
        self._rxnorm("normalize_approximate")
        rxcui = self._rxcui_for(name)
        if rxcui is None:
            return {"approximateGroup": {"inputTerm": name}}
        return {"approximateGroup": {"candidate": [{"rxcui": rxcui, "score": "100", "rank": "1"}]}}

    async def normalize_exact(self, name: str) -> dict[str, Any]:
        self._rxnorm("normalize_exact")
        rxcui = self._rxcui_for(name)
        return {"idGroup": {"rxnormId": [rxcui]} if rxcui else {"name": name}}

    async def spelling_suggestions(self, name: str) -> dict[str, Any]:
        self._rxnorm("spelling_suggestions")
        suggestion = SPELLING.get(name.lower())
        return {"suggestionGroup": {"suggestionList": {"suggestion": [suggestion] if suggestion else []}}}

    async def properties(self, rxcui: str) -> dict[str, Any]:
        self._rxnorm("properties")
        return {"properties": {"rxcui": rxcui, "name": self._name_for(rxcui)}}

    async def related_names(self, rxcui: str) -> dict[str, Any]:
        self._rxnorm("related_names")
        name = self._name_for(rxcui)
        brands = DRUG_CATALOG[name][1] if name else []
        return {"relatedGroup": {"conceptGroup": [
            {"tty": "BN", "conceptProperties": [{"name": b} for b in brands]},
            {"tty": "IN", "conceptProperties": [{"name": name}] if name else []},
        ]}}

    async def adverse_events(self, name_a: str, name_b: str, limit: int = 100) -> dict[str, Any]:
        self._openfda("adverse_events")
        pair = tuple(sorted((name_a, name_b)))
        delay = self.delays.get(pair)
        if delay:
            await asyncio.sleep(delay)
        return self.events.get(pair, {"meta": {"results": {"total": 0}}, "results": []})

    async def label_interaction_text(self, name_a: str, name_b: str) -> dict[str, Any]:
        self._openfda("label_interaction_text")
        pair = tuple(sorted((name_a, name_b)))
        return {"results": [{"drug_interactions": [t]} for t in self.labels.get(pair, [])]}

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def provider() -> FakeDrugDataProvider:
    return FakeDrugDataProvider()


@pytest.fixture
def cache() -> CacheService:
    """Fresh in-memory cache, no Redis mirror."""
    return CacheService(ttl_seconds=3600, max_entries=500)


@pytest.fixture
def patient_store() -> PatientStore:
    """The bundled patient snapshot."""
    return PatientStore.from_file(Settings().PATIENT_DATA_PATH)


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def orchestrator(provider, cache, patient_store, settings):
    instance = build_orchestrator(provider, cache, patient_store)
    instance.settings = settings
    return instance


@pytest.fixture
def test_client(orchestrator, cache):
    """Synchronous test client wired to the fake provider."""
    async def override_orchestrator():
        return orchestrator

    async def override_cache():
        return cache

    app.dependency_overrides[get_orchestrator] = override_orchestrator
    app.dependency_overrides[get_cache_service] = override_cache
    yield TestClient(app)
    app.dependency_overrides.clear()
