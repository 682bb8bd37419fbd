"""
Patient context subagent.

Loads a patient record from the snapshot store and derives BMI, medication
durations, lab significance flags, risk factors and interaction
considerations.
"""

import datetime as dt
from typing import Any, Callable, Optional

from medguard.agents.base import BaseSubagent
from medguard.core.exceptions import NotFoundError
from medguard.core.logging import get_logger
from medguard.schemas.clinical import (
    Condition,
    Demographics,
    LabValue,
    Medication,
    PatientContext,
    RelevantHistory,
    RiskFactor,
)
from medguard.schemas.tasks import ContextInput, TaskType
from medguard.services.knowledge_base import (
    WATCH_LIST_CLASSES,
    drug_classes,
    is_anticoagulant,
    is_immunosuppressant,
    is_narrow_therapeutic_index,
)
from medguard.services.patient_store import PatientStore

logger = get_logger(__name__)

POLYPHARMACY_THRESHOLD = 5


def calculate_bmi(weight_kg: Optional[float], height_cm: Optional[float]) -> Optional[float]:
    if not weight_kg or not height_cm:
        return None
    height_m = height_cm / 100
    return round(weight_kg / (height_m * height_m), 1)


def days_since(start: Optional[dt.date], today: dt.date) -> Optional[int]:
    if start is None:
        return None
    return abs((today - start).days)


def interaction_potential(drug_name: str) -> str:
    if is_narrow_therapeutic_index(drug_name):
        return "high"
    if drug_classes(drug_name) & WATCH_LIST_CLASSES:
        return "moderate"
    return "low"


def lab_significance(name: str, lab: LabValue) -> list[str]:
    """Clinical flags for one lab value."""
    key = name.lower()
    value = lab.value
    flags = []

    if key == "inr":
        if value > 3.0:
            flags.append("High INR - increased bleeding risk")
        elif value < 2.0 and lab.target_range:
            flags.append("Subtherapeutic INR")
    elif key == "creatinine":
        if value > 1.5:
            flags.append("Elevated creatinine - renal impairment")
    elif key == "egfr":
        if value < 60:
            flags.append("Reduced eGFR - chronic kidney disease")
        if value < 30:
            flags.append("Severe renal impairment")
    elif key == "potassium":
        if value > 5.0:
            flags.append("Hyperkalemia risk")
        elif value < 3.5:
            flags.append("Hypokalemia risk")
    elif key == "alt":
        if value > 40:
            flags.append("Elevated liver enzymes")

    return flags or ["Within normal limits"]


class PatientContextProvider(BaseSubagent):
    """Builds a PatientContext for one patient id per task."""

    task_type = TaskType.CONTEXT_RETRIEVAL
    source = "patient_store"
    failure_follow_up = ["Verify patient ID", "Check patient data source"]
    failure_warning = "Patient context retrieval failed"
    failure_limitation = "Unable to provide patient-specific recommendations"

    def __init__(
        self,
        store: PatientStore,
        today: Optional[Callable[[], dt.date]] = None,
    ):
        self.store = store
        self._today = today or dt.date.today

    async def run(self, task_input: ContextInput) -> dict[str, Any]:
        return self.build_context(task_input.patient_id)

    def build_context(self, patient_id: str) -> dict[str, Any]:
        patient = self.store.get_patient(patient_id)
        if patient is None:
            raise NotFoundError(
                f"Patient not found: {patient_id}",
                details={"patient_id": patient_id}
            )

        decisions = [f"Retrieved patient record for {patient_id}"]
        warnings: list[str] = []

        history = self.store.get_history(patient_id)
        if history is None:
            warnings.append("Medical history not available")
            decisions.append("No medical history found")
        else:
            decisions.append("Retrieved medical history")

        today = self._today()
        conditions = [
            Condition(condition=c) if isinstance(c, str) else Condition(**c)
            for c in patient.get("conditions", [])
        ]
        medications = [self._medication(m, today) for m in patient.get("current_medications", [])]
        labs = {
            name: self._lab(name, data, today)
            for name, data in (patient.get("lab_values") or {}).items()
        }
        relevant_history = RelevantHistory(**{
            k: v for k, v in history.items() if k != "patient_id"
        }) if history else None

        context = PatientContext(
            patient_id=patient_id,
            demographics=Demographics(
                age=patient.get("age"),
                gender=patient.get("gender"),
                weight_kg=patient.get("weight_kg"),
                height_cm=patient.get("height_cm"),
                bmi=calculate_bmi(patient.get("weight_kg"), patient.get("height_cm")),
            ),
            allergies=list(patient.get("allergies", [])),
            conditions=conditions,
            current_medications=medications,
            lab_values=labs,
            relevant_history=relevant_history,
        )
        context = context.model_copy(update={
            "risk_factors": identify_risk_factors(context),
            "interaction_considerations": interaction_considerations(context),
        })

        age = context.demographics.age
        if age is not None and age >= 65:
            warnings.append("Elderly patient - increased sensitivity to medications")
        if context.has_condition("kidney", "renal"):
            warnings.append("Renal impairment - dose adjustments may be needed")
        if context.has_condition("liver", "hepatic"):
            warnings.append("Hepatic impairment - monitor for drug accumulation")

        return {
            "result": context,
            "confidence": 1.0,
            "source": self.source,
            "decisions": decisions,
            "warnings": warnings,
        }

    def _medication(self, raw: dict[str, Any], today: dt.date) -> Medication:
        medication = Medication(**raw)
        return medication.model_copy(update={
            "duration_days": days_since(medication.started, today),
            "interaction_potential": interaction_potential(medication.drug_name),
        })

    def _lab(self, name: str, raw: dict[str, Any], today: dt.date) -> LabValue:
        lab = LabValue(**raw)
        return lab.model_copy(update={
            "age_days": days_since(lab.date, today),
            "clinical_significance": lab_significance(name, lab),
        })


def identify_risk_factors(context: PatientContext) -> list[RiskFactor]:
    factors = []
    age = context.demographics.age
    egfr = context.lab("eGFR")
    alt = context.lab("ALT")
    medications = [m.drug_name for m in context.current_medications]
    history = context.relevant_history

    if age is not None and age >= 65:
        factors.append(RiskFactor(
            factor="Advanced age",
            impact="Increased drug sensitivity, reduced clearance"
        ))
    if context.has_condition("kidney", "renal") or (egfr is not None and egfr < 60):
        factors.append(RiskFactor(
            factor="Renal impairment",
            impact="Reduced drug elimination, dose adjustment needed"
        ))
    if context.has_condition("liver", "hepatic", "cirrhosis") or (alt is not None and alt > 80):
        factors.append(RiskFactor(
            factor="Hepatic impairment",
            impact="Reduced drug metabolism, accumulation risk"
        ))
    if any(is_anticoagulant(name) for name in medications):
        factors.append(RiskFactor(
            factor="Anticoagulation",
            impact="Bleeding risk with interacting drugs"
        ))
    if context.has_condition("atrial fibrillation"):
        factors.append(RiskFactor(
            factor="Atrial fibrillation",
            impact="Anticoagulation required, bleeding risk"
        ))
    if context.has_condition("diabetes"):
        factors.append(RiskFactor(
            factor="Diabetes",
            impact="Drug interactions with antidiabetics, glucose monitoring needed"
        ))
    if context.has_condition("heart failure"):
        factors.append(RiskFactor(
            factor="Heart failure",
            impact="Sensitivity to fluid-retaining and negatively inotropic drugs"
        ))
    if history and history.adverse_drug_reactions:
        factors.append(RiskFactor(
            factor="Previous adverse drug reactions",
            impact="Increased vigilance required for new medications"
        ))
    if history and history.medication_adherence == "poor":
        factors.append(RiskFactor(
            factor="Poor medication adherence",
            impact="Unpredictable drug levels, reduced efficacy"
        ))
    if len(medications) >= POLYPHARMACY_THRESHOLD:
        factors.append(RiskFactor(
            factor="Polypharmacy",
            impact="Increased interaction risk, adverse effect potential"
        ))
    return factors


def interaction_considerations(context: PatientContext) -> list[str]:
    considerations = []
    medications = [m.drug_name for m in context.current_medications]
    allergies = {a.lower() for a in context.allergies}

    if any(is_anticoagulant(name) for name in medications):
        considerations.append("Patient on anticoagulation - monitor for bleeding interactions")
    if any(is_immunosuppressant(name) for name in medications):
        considerations.append("Immunosuppressed - avoid live vaccines, monitor for infections")
    if any(is_narrow_therapeutic_index(name) for name in medications):
        considerations.append(
            "Narrow therapeutic index drugs present - small changes can have significant effects"
        )
    if allergies & {"aspirin", "nsaid", "nsaids"}:
        considerations.append("NSAID allergy - avoid all NSAIDs including COX-2 inhibitors")
    return considerations
