"""
Tests for the interaction check pipeline.
"""

import pytest

from medguard.agents.orchestrator import (
    InteractionOrchestrator,
    PipelineState,
    Stage,
    next_stage,
)
from medguard.config import Settings
from medguard.core.exceptions import LogicError, NotFoundError, ValidationError
from medguard.schemas.clinical import RiskLevel, Severity
from medguard.schemas.interaction import InteractionCheckRequest


def steps(response, node: str) -> int:
    return sum(1 for step in response.processing_steps if step.node == node)


# ============================================================================
# TRANSITIONS
# ============================================================================

def test_next_stage_follows_fixed_order():
    """Test the happy path visits stages in order."""
    state = PipelineState(["warfarin", "aspirin"])

    assert next_stage(Stage.PARSE_INPUT, state) == Stage.NORMALIZE_DRUGS
    assert next_stage(Stage.NORMALIZE_DRUGS, state) == Stage.CHECK_INTERACTIONS
    assert next_stage(Stage.CHECK_INTERACTIONS, state) == Stage.ASSESS_RISK
    assert next_stage(Stage.ASSESS_RISK, state) == Stage.FORMAT_RESPONSE
    assert next_stage(Stage.FORMAT_RESPONSE, state) == Stage.DONE
    assert next_stage(Stage.DONE, state) == Stage.DONE


def test_next_stage_visits_patient_context_only_with_patient_id():
    """Test the context stage runs only for a patient id."""
    state = PipelineState(["warfarin", "aspirin"], patient_id="P001")

    assert next_stage(Stage.NORMALIZE_DRUGS, state) == Stage.GET_PATIENT_CONTEXT
    assert next_stage(Stage.GET_PATIENT_CONTEXT, state) == Stage.CHECK_INTERACTIONS


def test_next_stage_repeats_stage_on_pending_retry():
    """Test a pending retry re-enters the same stage."""
    state = PipelineState(["warfarin", "aspirin"])
    state.retry_pending = True

    assert next_stage(Stage.NORMALIZE_DRUGS, state) == Stage.NORMALIZE_DRUGS
    assert next_stage(Stage.FORMAT_RESPONSE, state) == Stage.DONE


def test_next_stage_jumps_to_format_response_on_failure():
    """Test a failure skips straight to formatting."""
    state = PipelineState(["warfarin", "aspirin"])
    state.failure = LogicError("boom")

    assert next_stage(Stage.CHECK_INTERACTIONS, state) == Stage.FORMAT_RESPONSE
    assert next_stage(Stage.FORMAT_RESPONSE, state) == Stage.DONE


def test_next_stage_does_not_mutate_state():
    """Test the transition function leaves state untouched."""
    state = PipelineState(["warfarin", "aspirin"], patient_id="P001")
    state.retry_pending = True
    before = dict(vars(state))

    next_stage(Stage.ASSESS_RISK, state)

    assert vars(state) == before


# ============================================================================
# SCENARIOS
# ============================================================================

async def test_warfarin_aspirin_is_danger(orchestrator: InteractionOrchestrator):
    """Test warfarin with aspirin is DANGER with a bleeding explanation."""
    response = await orchestrator.check_interaction(["Coumadin", "aspirin"])

    assert response.risk_level == RiskLevel.DANGER
    assert response.explanation.startswith("CRITICAL: warfarin and aspirin")
    assert "DO NOT administer these medications together" in response.recommendations
    assert "Monitor for signs of bleeding" in response.recommendations
    assert response.error_type is None
    assert response.patient_context_used is False

    assert [d.generic_name for d in response.drugs] == ["warfarin", "aspirin"]
    assert len(response.interactions) == 1
    interaction = response.interactions[0]
    assert interaction.severity == Severity.MAJOR
    assert interaction.source == "known_table"
    assert interaction.confidence == pytest.approx(0.95)


async def test_sertraline_tramadol_elderly_is_warning(orchestrator: InteractionOrchestrator):
    """Test sertraline with tramadol in an elderly patient is WARNING."""
    response = await orchestrator.check_interaction(["Zoloft", "tramadol"], patient_id="P002")

    assert response.risk_level == RiskLevel.WARNING
    assert response.patient_context_used is True
    assert "Age increases sensitivity." in response.explanation
    assert "Monitor for serotonin syndrome symptoms" in response.recommendations
    assert "Start with lower doses in elderly" in response.recommendations
    assert any("Duplicate therapy" in w for w in response.warnings)
    assert steps(response, Stage.GET_PATIENT_CONTEXT.value) == 1


async def test_unknown_pair_is_safe(orchestrator: InteractionOrchestrator):
    """Test a pair with no documented interaction is SAFE."""
    response = await orchestrator.check_interaction(["loratadine", "cetirizine"])

    assert response.risk_level == RiskLevel.SAFE
    assert "No significant interactions documented." in response.explanation
    assert "Proceed with standard administration" in response.recommendations
    assert response.interactions[0].found is False
    assert response.interactions[0].severity == Severity.UNKNOWN


async def test_allergy_forces_danger(orchestrator: InteractionOrchestrator):
    """Test a direct allergy forces DANGER."""
    response = await orchestrator.check_interaction(["amoxicillin", "acetaminophen"], patient_id="P001")

    assert response.risk_level == RiskLevel.DANGER
    assert "pose a serious risk" in response.explanation
    assert "penicillin" in response.explanation
    assert any("allergy" in r.lower() for r in response.recommendations)


async def test_allergy_cross_reactivity_forces_danger(orchestrator: InteractionOrchestrator):
    """Test a cross-reactive allergy forces DANGER."""
    response = await orchestrator.check_interaction(["cephalexin", "acetaminophen"], patient_id="P001")

    assert response.risk_level == RiskLevel.DANGER
    assert "cross-reactivity" in response.explanation


async def test_result_is_symmetric_in_drug_order(orchestrator: InteractionOrchestrator):
    """Test drug order does not change the result."""
    forward = await orchestrator.check_interaction(["warfarin", "aspirin"])
    backward = await orchestrator.check_interaction(["aspirin", "warfarin"])

    assert forward.risk_level == backward.risk_level
    assert forward.interactions[0].severity == backward.interactions[0].severity
    assert forward.risk_scores.overall == pytest.approx(backward.risk_scores.overall)


async def test_repeat_run_is_served_from_cache(orchestrator: InteractionOrchestrator, provider):
    """Test a repeat check reuses cached results."""
    first = await orchestrator.check_interaction(["sertraline", "loratadine"])
    approximate_calls = provider.calls["normalize_approximate"]
    event_calls = provider.calls["adverse_events"]

    second = await orchestrator.check_interaction(["sertraline", "loratadine"])

    assert second.risk_level == first.risk_level
    assert second.explanation == first.explanation
    assert provider.calls["normalize_approximate"] == approximate_calls
    assert provider.calls["adverse_events"] == event_calls


async def test_processing_time_is_sum_of_stage_durations(orchestrator: InteractionOrchestrator):
    """Test total time is the sum of stage durations."""
    response = await orchestrator.check_interaction(["warfarin", "aspirin"])

    stages = [s for s in response.processing_steps if s.node != Stage.FORMAT_RESPONSE.value]
    assert response.processing_time_ms == pytest.approx(sum(s.duration_ms for s in stages), abs=0.05)
    assert [s.node for s in response.processing_steps] == [
        "parse_input",
        "normalize_drugs",
        "check_interactions",
        "assess_risk",
        "format_response",
    ]
    assert response.task_count == 4


async def test_three_drugs_check_every_pair(orchestrator: InteractionOrchestrator):
    """Test every pair of three drugs is checked."""
    response = await orchestrator.check_interaction(["warfarin", "aspirin", "ibuprofen"])

    assert len(response.interactions) == 3
    assert response.risk_level == RiskLevel.DANGER
    assert "Consider acetaminophen for pain relief" in response.recommendations


# ============================================================================
# INPUT VALIDATION
# ============================================================================

async def test_single_drug_is_validation_error(orchestrator: InteractionOrchestrator, provider):
    """Test a single drug is rejected before normalization."""
    response = await orchestrator.check_interaction(["warfarin"])

    assert response.risk_level == RiskLevel.ERROR
    assert response.error_type == "ValidationError"
    assert "parse_input" in response.explanation
    assert "Manual verification required" in response.recommendations
    assert provider.calls["normalize_approximate"] == 0


async def test_duplicate_names_count_once(orchestrator: InteractionOrchestrator):
    """Test repeated names collapse to one drug."""
    response = await orchestrator.check_interaction(["Warfarin", " warfarin "])

    assert response.risk_level == RiskLevel.ERROR
    assert response.error_type == "ValidationError"


async def test_brand_and_generic_of_same_drug_is_not_a_pair(orchestrator: InteractionOrchestrator, provider):
    """Test two names for one drug are reported as a duplicate, not a normalization failure."""
    response = await orchestrator.check_interaction(["warfarin", "coumadin"])

    assert response.risk_level == RiskLevel.ERROR
    assert response.error_type == "ValidationError"
    assert "Fewer than 2 distinct drugs after normalization: coumadin is warfarin" in response.explanation
    assert "Failed to normalize" not in response.explanation
    assert provider.calls["adverse_events"] == 0


async def test_too_many_drugs_is_validation_error(orchestrator: InteractionOrchestrator):
    """Test the drug count limit."""
    orchestrator.settings = Settings(MAX_DRUGS=3)

    response = await orchestrator.check_interaction(["a1", "a2", "a3", "a4"])

    assert response.error_type == "ValidationError"


async def test_empty_patient_id_is_validation_error(orchestrator: InteractionOrchestrator):
    """Test an empty patient id is rejected."""
    response = await orchestrator.check_interaction(["warfarin", "aspirin"], patient_id="  ")

    assert response.risk_level == RiskLevel.ERROR
    assert response.error_type == "ValidationError"


async def test_unresolvable_drug_fails_request_without_retry(orchestrator: InteractionOrchestrator):
    """Test unresolvable drugs fail the check without retrying."""
    response = await orchestrator.check_interaction(["warfarin", "asdfgh"])

    assert response.risk_level == RiskLevel.ERROR
    assert response.error_type == "ValidationError"
    assert "normalize_drugs" in response.explanation
    assert "asdfgh" in response.explanation
    assert steps(response, Stage.NORMALIZE_DRUGS.value) == 1


async def test_unresolvable_drug_is_dropped_when_two_others_resolve(orchestrator: InteractionOrchestrator):
    """Test one bad name is dropped when two others resolve."""
    response = await orchestrator.check_interaction(["warfarin", "aspirin", "asdfgh"])

    assert response.risk_level == RiskLevel.DANGER
    assert len(response.drugs) == 2
    assert any(e.subject == "asdfgh" and e.error_type == "NotFoundError" for e in response.errors)


# ============================================================================
# DEGRADATION, RETRIES & TIMEOUTS
# ============================================================================

async def test_missing_patient_continues_without_context(orchestrator: InteractionOrchestrator):
    """Test an unknown patient degrades to a generic assessment."""
    response = await orchestrator.check_interaction(["warfarin", "aspirin"], patient_id="P999")

    assert response.risk_level == RiskLevel.DANGER
    assert response.patient_context_used is False
    assert any("Patient context unavailable" in w for w in response.warnings)
    assert any(e.node == "get_patient_context" for e in response.errors)


async def test_rxnorm_outage_uses_alias_table(orchestrator: InteractionOrchestrator, provider):
    """Test an RxNorm outage is survived through the alias table."""
    provider.rxnorm_down = True

    response = await orchestrator.check_interaction(["coumadin", "aspirin"])

    assert response.risk_level == RiskLevel.DANGER
    assert response.drugs[0].rxcui == "synthetic:warfarin"
    assert response.drugs[0].confidence == pytest.approx(0.7)
    assert "RxNorm API unavailable" in response.warnings


async def test_openfda_outage_uses_class_rule(orchestrator: InteractionOrchestrator, provider):
    """Test an openFDA outage is survived through class rules."""
    provider.openfda_down = True

    response = await orchestrator.check_interaction(["sertraline", "naproxen"])

    assert response.risk_level == RiskLevel.WARNING
    assert response.interactions[0].source == "fallback"
    assert response.interactions[0].severity == Severity.MODERATE


async def test_transient_failure_is_retried(orchestrator: InteractionOrchestrator, provider):
    """Test a transient stage failure is retried."""
    provider.rxnorm_failures = 2

    response = await orchestrator.check_interaction(["loratadine", "cetirizine"])

    assert response.risk_level == RiskLevel.SAFE
    assert steps(response, Stage.NORMALIZE_DRUGS.value) == 2
    assert any(e.node == "normalize_drugs" and e.error_type == "ProviderError" for e in response.errors)


async def test_retry_budget_exhaustion_is_error(orchestrator: InteractionOrchestrator, provider):
    """Test an exhausted retry budget ends in ERROR."""
    provider.rxnorm_down = True

    response = await orchestrator.check_interaction(["loratadine", "cetirizine"])

    assert response.risk_level == RiskLevel.ERROR
    assert response.error_type == "ProviderError"
    assert "normalize_drugs" in response.explanation
    assert response.recommendations[0] == "Manual verification required"
    assert steps(response, Stage.NORMALIZE_DRUGS.value) == 3
    assert provider.calls["normalize_approximate"] == 6


async def test_all_pairs_failing_is_error(orchestrator: InteractionOrchestrator, provider):
    """Test the check fails when no pair can be verified."""
    provider.openfda_down = True

    response = await orchestrator.check_interaction(["loratadine", "cetirizine"])

    assert response.risk_level == RiskLevel.ERROR
    assert response.error_type == "ProviderError"
    assert "check_interactions" in response.explanation
    assert steps(response, Stage.CHECK_INTERACTIONS.value) == 3


async def test_slow_pair_times_out_without_sinking_others(orchestrator: InteractionOrchestrator, provider):
    """Test one slow pair times out on its own."""
    orchestrator.settings = Settings(INTERACTION_TIMEOUT_MS=100)
    provider.delays[("aspirin", "loratadine")] = 0.5

    response = await orchestrator.check_interaction(["warfarin", "aspirin", "loratadine"])

    assert response.risk_level == RiskLevel.DANGER
    assert len(response.interactions) == 2
    timeouts = [e for e in response.errors if e.error_type == "TimeoutError"]
    assert len(timeouts) == 1
    assert timeouts[0].subject == "aspirin|loratadine"
    assert any("could not be verified" in w for w in response.warnings)


async def test_pipeline_timeout_is_error(orchestrator: InteractionOrchestrator, provider):
    """Test the top-level timeout ends in ERROR."""
    orchestrator.settings = Settings(PIPELINE_TIMEOUT_MS=200)
    provider.delays[("cetirizine", "loratadine")] = 1.0

    response = await orchestrator.check_interaction(["loratadine", "cetirizine"])

    assert response.risk_level == RiskLevel.ERROR
    assert response.error_type == "TimeoutError"
    assert "check_interactions" in response.explanation
    assert "200ms" in response.explanation
    assert response.recommendations


# ============================================================================
# SINGLE-DRUG NORMALIZATION
# ============================================================================

async def test_normalize_drug(orchestrator: InteractionOrchestrator):
    """Test single-drug normalization."""
    drug = await orchestrator.normalize_drug("Zoloft")

    assert drug.generic_name == "sertraline"
    assert drug.original_input == "Zoloft"
    assert "Zoloft" in drug.brand_names


async def test_normalize_drug_raises_not_found(orchestrator: InteractionOrchestrator):
    """Test single-drug normalization of an unknown name."""
    with pytest.raises(NotFoundError, match="asdfgh"):
        await orchestrator.normalize_drug("asdfgh")


async def test_normalize_drug_rejects_blank(orchestrator: InteractionOrchestrator):
    """Test single-drug normalization of a blank name."""
    with pytest.raises(ValidationError):
        await orchestrator.normalize_drug("   ")


# ============================================================================
# BATCH
# ============================================================================

async def test_batch_reports_each_item_by_index(orchestrator: InteractionOrchestrator):
    """Test a batch runs every check and counts failures per item."""
    batch = await orchestrator.check_batch([
        InteractionCheckRequest(drugs=["warfarin", "aspirin"]),
        InteractionCheckRequest(drugs=["warfarin"]),
        InteractionCheckRequest(drugs=["sertraline", "tramadol"], patient_id="P002"),
    ])

    assert batch.total == 3
    assert batch.successful == 2
    assert batch.failed == 1
    assert [r.index for r in batch.results] == [0, 1, 2]
    assert batch.results[0].result.risk_level == RiskLevel.DANGER
    assert batch.results[1].success is False
    assert batch.results[1].result.error_type == "ValidationError"
    assert "At least 2 drugs required" in batch.results[1].error
    assert batch.results[2].result.patient_context_used is True


async def test_batch_size_is_bounded(orchestrator: InteractionOrchestrator):
    """Test empty and oversized batches are rejected before any check runs."""
    orchestrator.settings = Settings(MAX_BATCH_SIZE=2)
    request = InteractionCheckRequest(drugs=["warfarin", "aspirin"])

    with pytest.raises(ValidationError, match="exceeds the limit of 2"):
        await orchestrator.check_batch([request] * 3)
    with pytest.raises(ValidationError):
        await orchestrator.check_batch([])
