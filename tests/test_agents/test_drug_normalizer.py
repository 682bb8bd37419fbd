"""
Tests for drug name normalization.
"""

import pytest

from medguard.agents.drug_normalizer import (
    DrugNormalizer,
    calculate_confidence,
    parse_related,
)
from medguard.core.exceptions import NotFoundError, ProviderError, ValidationError


@pytest.fixture
def normalizer(provider, cache) -> DrugNormalizer:
    return DrugNormalizer(provider, cache)


async def test_brand_name_resolves_to_generic(normalizer: DrugNormalizer):
    """Test a brand name resolves to its generic ingredient."""
    output = await normalizer.normalize("Coumadin")
    drug = output["result"]

    assert drug.generic_name == "warfarin"
    assert drug.rxcui == "11289"
    assert drug.original_input == "Coumadin"
    assert drug.match_type == "approximate"
    assert drug.confidence == pytest.approx(0.9)
    assert "Coumadin" in drug.brand_names
    assert drug.active_ingredients == ["warfarin"]
    assert output["source"] == "rxnorm"
    assert any("alias table" in d for d in output["decisions"])


async def test_spelling_correction(normalizer: DrugNormalizer):
    """Test a misspelling resolves through spelling suggestions."""
    output = await normalizer.normalize("aspirn")
    drug = output["result"]

    assert drug.generic_name == "aspirin"
    assert drug.match_type == "spelling"
    assert drug.confidence == pytest.approx(0.7)
    assert any("spell-corrected" in w for w in output["warnings"])


async def test_unknown_name_is_not_found(normalizer: DrugNormalizer):
    """Test an unresolvable name raises NotFoundError."""
    with pytest.raises(NotFoundError, match="Drug not found: asdfgh"):
        await normalizer.normalize("asdfgh")


async def test_blank_name_is_validation_error(normalizer: DrugNormalizer):
    """Test a blank name is rejected."""
    with pytest.raises(ValidationError):
        await normalizer.normalize("  ")


async def test_second_lookup_is_served_from_cache(normalizer: DrugNormalizer, provider):
    """Test a repeat lookup makes no provider calls."""
    await normalizer.normalize("warfarin")
    calls = sum(provider.calls.values())

    output = await normalizer.normalize("Warfarin")

    assert output["source"] == "cache"
    assert output["result"].original_input == "Warfarin"
    assert output["result"].generic_name == "warfarin"
    assert sum(provider.calls.values()) == calls


async def test_provider_outage_falls_back_to_alias(normalizer: DrugNormalizer, provider, cache):
    """Test an RxNorm outage degrades to a synthetic alias result."""
    provider.rxnorm_down = True

    output = await normalizer.normalize("zoloft")
    drug = output["result"]

    assert drug.rxcui == "synthetic:sertraline"
    assert drug.is_synthetic
    assert drug.match_type == "synthetic"
    assert drug.confidence == pytest.approx(0.7)
    assert output["source"] == "alias_table"
    assert "RxNorm API unavailable" in output["warnings"]
    assert cache.count("drug") == 0


async def test_provider_outage_without_alias_propagates(normalizer: DrugNormalizer, provider):
    """Test an outage with no alias raises ProviderError."""
    provider.rxnorm_down = True

    with pytest.raises(ProviderError):
        await normalizer.normalize("loratadine")


def test_confidence_penalties():
    """Test confidence penalties and their floor."""
    assert calculate_confidence("exact", []) == 1.0
    assert calculate_confidence("approximate", []) == pytest.approx(0.9)
    assert calculate_confidence("spelling", ["corrected"]) == pytest.approx(0.7)
    assert calculate_confidence("spelling", ["w"] * 9) == pytest.approx(0.3)


def test_parse_related_splits_brands_and_ingredients():
    """Test related concepts split into brands and ingredients."""
    payload = {"relatedGroup": {"conceptGroup": [
        {"tty": "BN", "conceptProperties": [{"name": "Advil"}, {"name": "Motrin"}, {"name": "Advil"}]},
        {"tty": "IN", "conceptProperties": [{"name": "ibuprofen"}]},
        {"tty": "SCD"},
    ]}}

    brands, ingredients = parse_related(payload)

    assert brands == ["Advil", "Motrin"]
    assert ingredients == ["ibuprofen"]
