"""
Tests for pairwise interaction checks.
"""

import pytest

from medguard.agents.interaction_checker import (
    InteractionChecker,
    mechanism_from_text,
    summarize_adverse_events,
)
from medguard.core.exceptions import ProviderError
from medguard.schemas.clinical import NormalizedDrug, Severity
from medguard.schemas.tasks import InteractionInput, Task, TaskType


def drug(name: str, brands: list[str] = None) -> NormalizedDrug:
    return NormalizedDrug(
        original_input=name,
        rxcui=f"rx-{name}",
        generic_name=name,
        brand_names=brands or [],
        confidence=1.0,
    )


def event(serious: bool, *reactions: str) -> dict:
    return {
        "serious": "1" if serious else "2",
        "patient": {"reaction": [{"reactionmeddrapt": r} for r in reactions]},
    }


@pytest.fixture
def checker(provider, cache) -> InteractionChecker:
    return InteractionChecker(provider, cache, adverse_event_limit=50)


async def test_known_pair_in_either_order(checker: InteractionChecker, provider):
    """Test the critical pair table is hit in both orders."""
    forward = (await checker.check(drug("warfarin"), drug("aspirin")))["result"]
    backward = (await checker.check(drug("aspirin"), drug("warfarin")))["result"]

    assert forward.severity == backward.severity == Severity.MAJOR
    assert forward.source == "known_table"
    assert forward.confidence == pytest.approx(0.95)
    assert forward.pair_key == backward.pair_key == ("aspirin", "warfarin")
    assert provider.calls["adverse_events"] == 0


async def test_verdict_is_cached_per_unordered_pair(checker: InteractionChecker, cache):
    """Test a verdict is cached once per unordered pair."""
    await checker.check(drug("warfarin"), drug("aspirin"))

    output = await checker.check(drug("aspirin"), drug("warfarin"))

    assert output["source"] == "cache"
    assert output["result"].drug1 == "aspirin"
    assert output["result"].source == "known_table"
    assert cache.count("interaction") == 1


async def test_adverse_event_signal(checker: InteractionChecker, provider):
    """Test co-reports and label text combine into a verdict."""
    results = [event(True, "Somnolence", "Dizziness") for _ in range(12)]
    results += [event(False, "Headache") for _ in range(8)]
    provider.events[("cetirizine", "loratadine")] = {
        "meta": {"results": {"total": 20}},
        "results": results,
    }
    provider.labels[("cetirizine", "loratadine")] = [
        "Loratadine and cetirizine share CYP3A4 metabolism."
    ]

    output = await checker.check(drug("loratadine"), drug("cetirizine"))
    interaction = output["result"]

    assert interaction.found
    assert interaction.severity == Severity.MAJOR
    assert interaction.confidence == pytest.approx(1.0)
    assert interaction.mechanism == "Cytochrome P450 interaction"
    assert interaction.adverse_event_count == 20
    assert interaction.serious_event_count == 12
    assert interaction.common_reactions[0].reaction == "Somnolence"
    assert interaction.source == "openfda"


async def test_no_signal(checker: InteractionChecker):
    """Test a pair with no data is reported as unknown."""
    output = await checker.check(drug("loratadine"), drug("cetirizine"))
    interaction = output["result"]

    assert interaction.found is False
    assert interaction.severity == Severity.UNKNOWN
    assert interaction.confidence == pytest.approx(0.6)
    assert "Absence of data does not guarantee safety" in output["warnings"]


async def test_outage_uses_class_rule_without_caching(checker: InteractionChecker, provider, cache):
    """Test an openFDA outage falls back to a class rule."""
    provider.openfda_down = True

    output = await checker.check(drug("sertraline", ["Zoloft"]), drug("naproxen", ["Aleve"]))
    interaction = output["result"]

    assert interaction.severity == Severity.MODERATE
    assert interaction.source == "fallback"
    assert interaction.confidence == pytest.approx(0.7)
    assert output["source"] == "fallback"
    assert cache.count("interaction") == 0


async def test_outage_with_no_rule_fails(checker: InteractionChecker, provider):
    """Test an outage with no fallback rule fails the task."""
    provider.openfda_down = True

    with pytest.raises(ProviderError):
        await checker.check(drug("loratadine"), drug("cetirizine"))

    task = Task.create(
        TaskType.INTERACTION_CHECK,
        "Check",
        InteractionInput(drug1=drug("loratadine"), drug2=drug("cetirizine")),
        timeout_ms=1000,
    )
    result = await checker.execute(task)
    assert result.error_type == "ProviderError"
    assert "Interaction check failed" in result.recommendations.warnings


def test_summarize_adverse_events_counts_serious_flags():
    """Test serious reports and reactions are counted."""
    payload = {
        "meta": {"results": {"total": 3}},
        "results": [
            {"seriousnessdeath": "1", "patient": {"reaction": [{"reactionmeddrapt": "Haemorrhage"}]}},
            event(False, "Haemorrhage", "Nausea"),
            event(False),
        ],
    }

    summary = summarize_adverse_events(payload)

    assert summary["total"] == 3
    assert summary["serious_count"] == 1
    assert summary["common_reactions"][0].reaction == "Haemorrhage"
    assert summary["common_reactions"][0].count == 2


def test_mechanism_keywords_are_case_insensitive():
    """Test mechanism keywords match regardless of case."""
    assert mechanism_from_text("Inhibits CYP2C9") == "Cytochrome P450 interaction"
    assert mechanism_from_text("Risk of Serotonin syndrome") == "Serotonergic interaction"
    assert mechanism_from_text("Increased BLEEDING") == "Increased bleeding risk"
    assert mechanism_from_text("Unrelated") == "Unknown mechanism"
