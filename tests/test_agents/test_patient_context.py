"""
Tests for patient context retrieval.
"""

import datetime as dt

import pytest

from medguard.agents.patient_context import (
    PatientContextProvider,
    calculate_bmi,
    interaction_potential,
    lab_significance,
)
from medguard.core.exceptions import NotFoundError
from medguard.schemas.clinical import LabValue
from medguard.schemas.tasks import ContextInput, Task, TaskType


@pytest.fixture
def context_provider(patient_store) -> PatientContextProvider:
    return PatientContextProvider(patient_store, today=lambda: dt.date(2024, 6, 1))


def factor_names(context) -> list[str]:
    return [f.factor for f in context.risk_factors]


def test_anticoagulated_elderly_patient(context_provider: PatientContextProvider):
    """Test context for an elderly anticoagulated patient."""
    output = context_provider.build_context("P001")
    context = output["result"]

    assert context.demographics.age == 72
    assert context.demographics.bmi == pytest.approx(25.9)
    assert context.allergies == ["penicillin"]
    assert context.lab("inr") == pytest.approx(2.8)
    assert context.lab_values["INR"].clinical_significance == ["Within normal limits"]
    assert context.lab_values["INR"].age_days == 148

    potentials = {m.drug_name: m.interaction_potential for m in context.current_medications}
    assert potentials == {"warfarin": "high", "metoprolol": "low", "atorvastatin": "moderate"}
    assert context.current_medications[0].duration_days > 365

    assert "Advanced age" in factor_names(context)
    assert "Anticoagulation" in factor_names(context)
    assert "Atrial fibrillation" in factor_names(context)
    assert "Previous adverse drug reactions" in factor_names(context)
    assert any("anticoagulation" in c for c in context.interaction_considerations)
    assert "Elderly patient - increased sensitivity to medications" in output["warnings"]


def test_renal_patient(context_provider: PatientContextProvider):
    """Test context for a patient with renal impairment."""
    output = context_provider.build_context("P003")
    context = output["result"]

    assert context.lab_values["eGFR"].clinical_significance == [
        "Reduced eGFR - chronic kidney disease",
        "Severe renal impairment",
    ]
    assert context.lab_values["potassium"].clinical_significance == ["Hyperkalemia risk"]

    factors = factor_names(context)
    for expected in ("Renal impairment", "Diabetes", "Heart failure", "Poor medication adherence", "Polypharmacy"):
        assert expected in factors
    assert "NSAID allergy - avoid all NSAIDs including COX-2 inhibitors" in context.interaction_considerations
    assert "Renal impairment - dose adjustments may be needed" in output["warnings"]


def test_patient_without_history(context_provider: PatientContextProvider):
    """Test a patient without history yields a warning only."""
    output = context_provider.build_context("P005")

    assert output["result"].relevant_history is None
    assert output["result"].risk_factors == []
    assert "Medical history not available" in output["warnings"]


def test_unknown_patient(context_provider: PatientContextProvider):
    """Test an unknown patient id raises NotFoundError."""
    with pytest.raises(NotFoundError, match="Patient not found: P999"):
        context_provider.build_context("P999")


async def test_unknown_patient_task_fails(context_provider: PatientContextProvider):
    """Test an unknown patient id fails the task."""
    task = Task.create(
        TaskType.CONTEXT_RETRIEVAL,
        "Context",
        ContextInput(patient_id="P999"),
        timeout_ms=1000,
    )
    result = await context_provider.execute(task)

    assert result.error_type == "NotFoundError"
    assert "Verify patient ID" in result.recommendations.follow_up


def test_calculate_bmi():
    """Test BMI calculation."""
    assert calculate_bmi(80, 200) == pytest.approx(20.0)
    assert calculate_bmi(None, 170) is None


def test_interaction_potential():
    """Test interaction potential tiers."""
    assert interaction_potential("lithium carbonate") == "high"
    assert interaction_potential("sertraline") == "moderate"
    assert interaction_potential("metformin") == "low"


def test_lab_significance_thresholds():
    """Test lab significance thresholds."""
    assert lab_significance("INR", LabValue(value=3.4)) == ["High INR - increased bleeding risk"]
    assert lab_significance("INR", LabValue(value=1.6, target_range="2.0-3.0")) == ["Subtherapeutic INR"]
    assert lab_significance("creatinine", LabValue(value=1.8)) == ["Elevated creatinine - renal impairment"]
    assert lab_significance("eGFR", LabValue(value=45)) == ["Reduced eGFR - chronic kidney disease"]
    assert lab_significance("potassium", LabValue(value=3.1)) == ["Hypokalemia risk"]
    assert lab_significance("ALT", LabValue(value=41)) == ["Elevated liver enzymes"]
    assert lab_significance("sodium", LabValue(value=139)) == ["Within normal limits"]
