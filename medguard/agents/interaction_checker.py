"""
Interaction checker subagent.

Checks one unordered drug pair: known critical pairs first, then openFDA
adverse-event co-reports and label interaction text. When openFDA is
unreachable the knowledge base supplies a fallback verdict if it can.
"""

from collections import Counter
from typing import Any, Optional

from medguard.agents.base import BaseSubagent
from medguard.config import get_settings
from medguard.core.cache import CacheService
from medguard.core.exceptions import ProviderError
from medguard.core.logging import get_logger
from medguard.schemas.clinical import Interaction, NormalizedDrug, ReactionCount, Severity
from medguard.schemas.tasks import InteractionInput, TaskType
from medguard.services.drug_data_provider import DrugDataProvider
from medguard.services.knowledge_base import class_interaction, known_interaction, resolve_alias

logger = get_logger(__name__)

KNOWN_TABLE_CONFIDENCE = 0.95
FALLBACK_CONFIDENCE = 0.7
NO_SIGNAL_CONFIDENCE = 0.6

SERIOUS_FLAGS = (
    "serious",
    "seriousnessdeath",
    "seriousnesshospitalization",
    "seriousnesslifethreatening",
)

MECHANISM_KEYWORDS = (
    ("cyp", "Cytochrome P450 interaction"),
    ("serotonin", "Serotonergic interaction"),
    ("bleeding", "Increased bleeding risk"),
)

CLINICAL_SIGNIFICANCE = {
    Severity.MAJOR: "Avoid combination if possible. If unavoidable, monitor closely and consider dose adjustment.",
    Severity.MODERATE: "Use with caution. Monitor for adverse effects and adjust therapy as needed.",
    Severity.MINOR: "Monitor for potential adverse effects. Clinical significance may vary by patient.",
    Severity.UNKNOWN: "Limited data available. Monitor patient and report any adverse effects.",
}


def summarize_adverse_events(payload: dict[str, Any]) -> dict[str, Any]:
    """Total, serious count and top reactions from an openFDA event payload."""
    results = payload.get("results") or []
    if not isinstance(results, list):
        raise ProviderError("Malformed openFDA event payload")

    meta_results = (payload.get("meta") or {}).get("results") or {}
    total = int(meta_results.get("total", len(results)))

    serious = 0
    reactions: Counter = Counter()
    for event in results:
        if any(str(event.get(flag)) == "1" for flag in SERIOUS_FLAGS):
            serious += 1
        for reaction in (event.get("patient") or {}).get("reaction") or []:
            term = reaction.get("reactionmeddrapt")
            if term:
                reactions[term] += 1

    return {
        "total": total,
        "serious_count": serious,
        "common_reactions": [
            ReactionCount(reaction=term, count=count)
            for term, count in reactions.most_common(5)
        ],
    }


def summarize_labels(payload: dict[str, Any], name_a: str, name_b: str) -> list[str]:
    """Label interaction sections that mention both drugs."""
    results = payload.get("results") or []
    if not isinstance(results, list):
        raise ProviderError("Malformed openFDA label payload")

    texts = []
    for label in results:
        section = label.get("drug_interactions")
        if not section:
            continue
        text = " ".join(section) if isinstance(section, list) else str(section)
        lower = text.lower()
        if name_a.lower() in lower and name_b.lower() in lower:
            texts.append(text)
    return texts


def mechanism_from_text(text: str) -> str:
    lower = text.lower()
    for keyword, mechanism in MECHANISM_KEYWORDS:
        if keyword in lower:
            return mechanism
    return "Unknown mechanism"


def analyze_interaction(
    adverse: dict[str, Any],
    label_texts: list[str],
    name_a: str,
    name_b: str,
) -> Interaction:
    """Combine adverse-event and label evidence into one verdict."""
    if adverse["serious_count"] > 10:
        severity, confidence = Severity.MAJOR, 0.9
    elif adverse["serious_count"] > 5:
        severity, confidence = Severity.MODERATE, 0.8
    elif adverse["total"] > 10:
        severity, confidence = Severity.MINOR, 0.7
    else:
        severity, confidence = Severity.UNKNOWN, 0.5

    if label_texts:
        confidence = min(1.0, confidence + 0.2)
        if severity == Severity.UNKNOWN:
            severity = Severity.MODERATE

    description = "Potential interaction based on FDA data"
    if adverse["common_reactions"]:
        top = ", ".join(r.reaction for r in adverse["common_reactions"][:3])
        description = f"Reported adverse events include: {top}"

    return Interaction(
        drug1=name_a,
        drug2=name_b,
        severity=severity,
        mechanism=mechanism_from_text(label_texts[0]) if label_texts else "Unknown mechanism",
        description=description,
        clinical_significance=CLINICAL_SIGNIFICANCE[severity],
        confidence=round(confidence, 2),
        found=adverse["total"] > 0 or bool(label_texts),
        source="openfda",
        adverse_event_count=adverse["total"],
        serious_event_count=adverse["serious_count"],
        common_reactions=adverse["common_reactions"],
    )


def no_signal(name_a: str, name_b: str) -> Interaction:
    return Interaction(
        drug1=name_a,
        drug2=name_b,
        severity=Severity.UNKNOWN,
        mechanism="No documented interaction",
        description="No significant interaction found in FDA database",
        clinical_significance="Monitor for unexpected effects",
        confidence=NO_SIGNAL_CONFIDENCE,
        found=False,
        source="openfda",
    )


class InteractionChecker(BaseSubagent):
    """Checks one drug pair per task."""

    task_type = TaskType.INTERACTION_CHECK
    source = "openfda"
    failure_follow_up = ["Check alternative data sources", "Consult drug interaction database"]
    failure_warning = "Interaction check failed"
    failure_limitation = "Unable to verify drug interaction"

    def __init__(
        self,
        provider: DrugDataProvider,
        cache: CacheService,
        adverse_event_limit: Optional[int] = None,
    ):
        self.provider = provider
        self.cache = cache
        self.adverse_event_limit = adverse_event_limit or get_settings().ADVERSE_EVENT_LIMIT

    async def run(self, task_input: InteractionInput) -> dict[str, Any]:
        return await self.check(task_input.drug1, task_input.drug2)

    async def check(self, drug1: NormalizedDrug, drug2: NormalizedDrug) -> dict[str, Any]:
        name1, name2 = drug1.key, drug2.key
        cache_key = CacheService.make_key("interaction", *sorted((name1, name2)))

        cached = await self.cache.get(cache_key)
        if cached is not None:
            interaction = Interaction(**{**cached, "drug1": name1, "drug2": name2})
            return {
                "result": interaction,
                "confidence": interaction.confidence,
                "source": "cache",
                "decisions": ["Served pair verdict from cache"],
            }

        known = known_interaction(name1, name2)
        if known:
            interaction = Interaction(
                drug1=name1,
                drug2=name2,
                confidence=KNOWN_TABLE_CONFIDENCE,
                found=True,
                source="known_table",
                **known,
            )
            await self.cache.set(cache_key, interaction.model_dump(mode="json"))
            return {
                "result": interaction,
                "confidence": KNOWN_TABLE_CONFIDENCE,
                "source": "known_table",
                "decisions": ["Found in known critical interactions table"],
            }

        decisions: list[str] = []
        try:
            adverse = summarize_adverse_events(
                await self.provider.adverse_events(name1, name2, self.adverse_event_limit)
            )
            decisions.append("Queried FDA adverse events database")
            label_texts = summarize_labels(
                await self.provider.label_interaction_text(name1, name2), name1, name2
            )
            decisions.append("Queried FDA drug label database")
        except ProviderError as e:
            return self._fallback(drug1, drug2, e)

        interaction = analyze_interaction(adverse, label_texts, name1, name2)
        if not interaction.found:
            interaction = no_signal(name1, name2)
            await self.cache.set(cache_key, interaction.model_dump(mode="json"))
            return {
                "result": interaction,
                "confidence": NO_SIGNAL_CONFIDENCE,
                "source": self.source,
                "decisions": decisions,
                "warnings": ["Absence of data does not guarantee safety"],
                "limitations": ["Limited interaction data available in FDA database"],
            }

        await self.cache.set(cache_key, interaction.model_dump(mode="json"))
        return {
            "result": interaction,
            "confidence": interaction.confidence,
            "source": self.source,
            "decisions": decisions,
        }

    def _fallback(
        self,
        drug1: NormalizedDrug,
        drug2: NormalizedDrug,
        error: ProviderError,
    ) -> dict[str, Any]:
        rule = self._knowledge_base_match(drug1, drug2)
        if rule is None:
            raise ProviderError(
                f"Failed to check interaction: {error.message}",
                details={"drug1": drug1.key, "drug2": drug2.key}
            ) from error

        logger.warning(
            "openFDA unavailable, using knowledge base fallback",
            extra={"drug1": drug1.key, "drug2": drug2.key}
        )
        interaction = Interaction(
            drug1=drug1.key,
            drug2=drug2.key,
            confidence=FALLBACK_CONFIDENCE,
            found=True,
            source="fallback",
            **rule,
        )
        return {
            "result": interaction,
            "confidence": FALLBACK_CONFIDENCE,
            "source": "fallback",
            "decisions": ["FDA API unavailable, used knowledge base fallback"],
            "warnings": ["Using cached interaction data"],
            "limitations": ["Real-time FDA data unavailable"],
        }

    def _knowledge_base_match(
        self,
        drug1: NormalizedDrug,
        drug2: NormalizedDrug,
    ) -> Optional[dict[str, Any]]:
        names1 = {resolve_alias(n) or n for n in drug1.all_names()}
        names2 = {resolve_alias(n) or n for n in drug2.all_names()}
        for a in sorted(names1):
            for b in sorted(names2):
                rule = known_interaction(a, b)
                if rule:
                    return rule
        return class_interaction(drug1.key, drug2.key)
