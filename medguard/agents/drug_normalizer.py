"""
Drug normalizer subagent.

Resolves free-text drug names to RxNorm concepts: alias table, then
approximate match, exact match and finally a spelling suggestion.
"""

from typing import Any, Optional

from medguard.agents.base import BaseSubagent
from medguard.core.cache import CacheService
from medguard.core.exceptions import NotFoundError, ProviderError, ValidationError
from medguard.core.logging import get_logger
from medguard.schemas.clinical import NormalizedDrug
from medguard.schemas.tasks import NormalizeInput, TaskType
from medguard.services.drug_data_provider import DrugDataProvider
from medguard.services.knowledge_base import is_known_generic, resolve_alias

logger = get_logger(__name__)

SYNTHETIC_CONFIDENCE = 0.7
MIN_CONFIDENCE = 0.3


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _section(payload: dict[str, Any], key: str) -> dict[str, Any]:
    section = payload.get(key) or {}
    if not isinstance(section, dict):
        raise ProviderError(f"Malformed RxNorm payload: '{key}' is not an object")
    return section


def parse_approximate(payload: dict[str, Any]) -> Optional[str]:
    candidates = _as_list(_section(payload, "approximateGroup").get("candidate"))
    for candidate in candidates:
        if isinstance(candidate, dict) and candidate.get("rxcui"):
            return str(candidate["rxcui"])
    return None


def parse_exact(payload: dict[str, Any]) -> Optional[str]:
    ids = _as_list(_section(payload, "idGroup").get("rxnormId"))
    return str(ids[0]) if ids else None


def parse_suggestions(payload: dict[str, Any]) -> list[str]:
    suggestion_list = _section(payload, "suggestionGroup").get("suggestionList") or {}
    return [str(s) for s in _as_list(suggestion_list.get("suggestion"))]


def parse_related(payload: dict[str, Any]) -> tuple[list[str], list[str]]:
    """Brand names (BN) and ingredient names (IN) from a related.json payload."""
    brands: list[str] = []
    ingredients: list[str] = []
    for group in _as_list(_section(payload, "relatedGroup").get("conceptGroup")):
        target = {"BN": brands, "IN": ingredients}.get(group.get("tty"))
        if target is None:
            continue
        for concept in _as_list(group.get("conceptProperties")):
            name = concept.get("name")
            if name and name not in target:
                target.append(name)
    return brands, ingredients


def calculate_confidence(match_type: str, warnings: list[str]) -> float:
    confidence = 1.0
    if match_type == "approximate":
        confidence -= 0.1
    elif match_type == "spelling":
        confidence -= 0.2
    confidence -= 0.1 * len(warnings)
    return round(max(MIN_CONFIDENCE, confidence), 2)


class DrugNormalizer(BaseSubagent):
    """Normalizes one drug name per task."""

    task_type = TaskType.NORMALIZE
    source = "rxnorm"
    failure_follow_up = ["Verify drug name spelling", "Try alternative drug name"]
    failure_warning = "Drug normalization failed"
    failure_limitation = "Unable to process this drug name"

    def __init__(self, provider: DrugDataProvider, cache: CacheService):
        self.provider = provider
        self.cache = cache

    async def run(self, task_input: NormalizeInput) -> dict[str, Any]:
        return await self.normalize(task_input.drug_name)

    async def normalize(self, drug_name: str) -> dict[str, Any]:
        clean = drug_name.strip().lower()
        if not clean:
            raise ValidationError("Drug name must not be empty")

        cache_key = CacheService.make_key("drug", clean)
        cached = await self.cache.get(cache_key)
        if cached is not None:
            drug = NormalizedDrug(**{**cached, "original_input": drug_name})
            return {
                "result": drug,
                "confidence": drug.confidence,
                "source": "cache",
                "decisions": [f'Served "{clean}" from cache'],
            }

        decisions: list[str] = []
        warnings: list[str] = []
        limitations: list[str] = []

        alias = resolve_alias(clean)
        search_name = alias or clean
        if alias:
            decisions.append(f'Mapped "{clean}" to "{alias}" using alias table')

        try:
            drug = await self._resolve(drug_name, search_name, decisions, warnings, limitations)
        except ProviderError as e:
            fallback = alias or (clean if is_known_generic(clean) else None)
            if fallback is None:
                raise
            logger.warning(
                f"RxNorm unavailable, using alias mapping for {clean}",
                extra={"drug": clean, "error": e.message}
            )
            drug = NormalizedDrug(
                original_input=drug_name,
                rxcui=f"synthetic:{fallback}",
                generic_name=fallback,
                confidence=SYNTHETIC_CONFIDENCE,
                match_type="synthetic",
            )
            return {
                "result": drug,
                "confidence": SYNTHETIC_CONFIDENCE,
                "source": "alias_table",
                "decisions": decisions + ["Used alias table mapping due to provider failure"],
                "warnings": ["RxNorm API unavailable"],
                "limitations": ["Limited drug information available"],
            }

        await self.cache.set(cache_key, drug.model_dump(mode="json"))
        return {
            "result": drug,
            "confidence": drug.confidence,
            "source": self.source,
            "decisions": decisions,
            "warnings": warnings,
            "limitations": limitations,
        }

    async def _resolve(
        self,
        drug_name: str,
        search_name: str,
        decisions: list[str],
        warnings: list[str],
        limitations: list[str],
    ) -> NormalizedDrug:
        rxcui = parse_approximate(await self.provider.normalize_approximate(search_name))
        match_type = "approximate"
        if rxcui:
            decisions.append(f'Found approximate match for "{search_name}"')
        else:
            rxcui = parse_exact(await self.provider.normalize_exact(search_name))
            match_type = "exact"
            decisions.append(f'Used exact match search for "{search_name}"')

        if not rxcui:
            suggestions = parse_suggestions(await self.provider.spelling_suggestions(search_name))
            if suggestions:
                corrected = suggestions[0]
                rxcui = parse_exact(await self.provider.normalize_exact(corrected))
                if rxcui:
                    match_type = "spelling"
                    decisions.append(f'Used spelling correction: "{search_name}" -> "{corrected}"')
                    warnings.append(
                        f'Drug name was spell-corrected from "{search_name}" to "{corrected}"'
                    )
                    search_name = corrected.lower()

        if not rxcui:
            raise NotFoundError(
                f"Drug not found: {drug_name}",
                details={"drug_name": drug_name}
            )

        property_name = None
        try:
            properties = await self.provider.properties(rxcui)
            property_name = (properties.get("properties") or {}).get("name")
        except ProviderError:
            limitations.append("Drug properties unavailable")

        brands: list[str] = []
        ingredients: list[str] = []
        try:
            brands, ingredients = parse_related(await self.provider.related_names(rxcui))
        except ProviderError:
            limitations.append("Related names unavailable")

        if len(ingredients) == 1:
            generic_name = ingredients[0]
        else:
            generic_name = property_name or search_name
        if not property_name and not ingredients:
            limitations.append("Generic name not found in RxNorm")
        if not brands:
            limitations.append("No brand names found")

        return NormalizedDrug(
            original_input=drug_name,
            rxcui=rxcui,
            generic_name=generic_name.lower(),
            brand_names=brands,
            active_ingredients=ingredients,
            confidence=calculate_confidence(match_type, warnings),
            match_type=match_type,
        )
