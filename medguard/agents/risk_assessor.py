"""
Risk assessor subagent.

Folds interactions, patient context and drug characteristics into a
weighted risk score, classifies it, applies the severity floor and allergy
override, and renders the explanation and recommendations for the final
level.
"""

import re
from typing import Any, Optional

from medguard.agents.base import BaseSubagent
from medguard.core.logging import get_logger
from medguard.schemas.clinical import (
    RISK_RANK,
    SEVERITY_RANK,
    Interaction,
    NormalizedDrug,
    PatientContext,
    RiskAssessment,
    RiskLevel,
    RiskScores,
    Severity,
)
from medguard.schemas.tasks import RiskInput, TaskType
from medguard.services.knowledge_base import (
    ALLERGY_CLASSES,
    ALLERGY_CROSS_REACTIVITY,
    BEERS_CRITERIA,
    DRUG_DISEASE_CAUTIONS,
    DUPLICATE_THERAPY_CLASSES,
    drug_classes,
    is_anticoagulant,
    is_immunosuppressant,
    is_narrow_therapeutic_index,
    is_nsaid,
    resolve_alias,
)

logger = get_logger(__name__)

WEIGHTS = {
    "interaction": 0.4,
    "patient_factors": 0.3,
    "drug_characteristics": 0.2,
    "clinical_context": 0.1,
}

DANGER_THRESHOLD = 0.7
WARNING_THRESHOLD = 0.4

SEVERITY_SCORES = {
    Severity.MAJOR: 0.9,
    Severity.MODERATE: 0.6,
    Severity.MINOR: 0.3,
    Severity.UNKNOWN: 0.1,
}

# Minimum level implied by a found interaction of each severity
SEVERITY_FLOOR = {
    Severity.MAJOR: RiskLevel.DANGER,
    Severity.MODERATE: RiskLevel.WARNING,
}

NO_CONTEXT_PATIENT_SCORE = 0.3

FOLLOW_UP = {
    RiskLevel.DANGER: [
        "Document interaction alert in patient record",
        "Notify prescriber immediately",
        "Consider pharmacy consultation",
        "Schedule follow-up within 24 hours",
    ],
    RiskLevel.WARNING: [
        "Document monitoring plan",
        "Set reminder for follow-up in 48-72 hours",
        "Educate patient on warning signs",
        "Consider dose adjustment if needed",
    ],
    RiskLevel.SAFE: [
        "Proceed with routine care",
        "Standard follow-up appropriate",
    ],
}

MECHANISM_MONITORING = (
    (("serotonin", "serotonergic"), [
        "Monitor for serotonin syndrome symptoms",
        "Watch for: confusion, agitation, tremor, sweating",
    ]),
    (("bleeding",), [
        "Monitor for signs of bleeding",
        "Check hemoglobin if bleeding suspected",
    ]),
    (("cyp", "cytochrome"), [
        "Consider dose adjustment",
        "Monitor for increased side effects",
    ]),
)


# ============================================================================
# COMPONENT SCORES
# ============================================================================

def score_interactions(interactions: list[Interaction], decisions: list[str]) -> float:
    if not interactions:
        decisions.append("No documented interactions found")
        return 0.0

    best = 0.0
    for interaction in interactions:
        score = SEVERITY_SCORES[interaction.severity]
        if interaction.serious_event_count > 10:
            score = min(1.0, score + 0.2)
        best = max(best, score)

    decisions.append(f"Highest interaction severity score: {best * 100:.0f}%")
    return best


def score_patient_factors(context: Optional[PatientContext], decisions: list[str]) -> float:
    """Mean of the patient risk contributions that apply."""
    if context is None:
        decisions.append("No patient context available")
        return NO_CONTEXT_PATIENT_SCORE

    contributions = []
    age = context.demographics.age
    if age is not None and age >= 75:
        contributions.append(0.3)
        decisions.append("Elderly patient (>=75 years)")
    elif age is not None and age >= 65:
        contributions.append(0.2)
        decisions.append("Older adult (65-74 years)")

    egfr = context.lab("eGFR")
    if egfr is not None and egfr < 30:
        contributions.append(0.4)
        decisions.append("Severe renal impairment (eGFR < 30)")
    elif egfr is not None and egfr < 60:
        contributions.append(0.2)
        decisions.append("Moderate renal impairment (eGFR 30-59)")

    alt = context.lab("ALT")
    if alt is not None and alt > 80:
        contributions.append(0.3)
        decisions.append("Significant liver enzyme elevation")

    med_count = len(context.current_medications)
    if med_count >= 10:
        contributions.append(0.3)
        decisions.append(f"Severe polypharmacy ({med_count} medications)")
    elif med_count >= 5:
        contributions.append(0.2)
        decisions.append(f"Polypharmacy ({med_count} medications)")

    if context.relevant_history and context.relevant_history.adverse_drug_reactions:
        contributions.append(0.2)
        decisions.append("History of adverse drug reactions")

    if not contributions:
        return 0.0
    return min(1.0, sum(contributions) / len(contributions))


def score_drug_characteristics(drugs: list[NormalizedDrug], decisions: list[str]) -> float:
    contributions = []
    for drug in drugs:
        if is_narrow_therapeutic_index(drug.key):
            contributions.append(0.4)
            decisions.append(f"Narrow therapeutic index drug: {drug.generic_name}")
        if is_anticoagulant(drug.key) or is_immunosuppressant(drug.key):
            contributions.append(0.3)
            decisions.append(f"High-risk drug class: {drug.generic_name}")

    if not contributions:
        return 0.0
    return min(1.0, sum(contributions) / len(contributions))


def score_clinical_context(
    drugs: list[NormalizedDrug],
    context: Optional[PatientContext],
    decisions: list[str],
    warnings: list[str],
) -> float:
    """Strongest drug-condition trigger, or 0."""
    if context is None:
        return 0.0

    score = 0.0
    has_anticoagulant = any(is_anticoagulant(d.key) for d in drugs)

    if has_anticoagulant and context.has_condition("bleed"):
        score = max(score, 0.8)
        decisions.append("Anticoagulant with bleeding history")

    if any(is_nsaid(d.key) for d in drugs) and context.has_condition("kidney", "renal"):
        score = max(score, 0.7)
        decisions.append("NSAID use with kidney disease")

    inr = context.lab("INR")
    if has_anticoagulant and inr is not None and inr > 3.5:
        score = max(score, 0.8)
        decisions.append(f"High INR ({inr}) with anticoagulant")

    for caution in DRUG_DISEASE_CAUTIONS:
        if not context.has_condition(*caution["conditions"]):
            continue
        if any(caution["class"] in drug_classes(d.key) for d in drugs):
            score = max(score, caution["score"])
            decisions.append(f"Drug-disease caution: {caution['message']}")
            warnings.append(caution["message"])

    return score


def classify(overall: float) -> RiskLevel:
    if overall >= DANGER_THRESHOLD:
        return RiskLevel.DANGER
    if overall >= WARNING_THRESHOLD:
        return RiskLevel.WARNING
    return RiskLevel.SAFE


def severity_floor(interactions: list[Interaction]) -> RiskLevel:
    floor = RiskLevel.SAFE
    for interaction in interactions:
        if not interaction.found:
            continue
        level = SEVERITY_FLOOR.get(interaction.severity)
        if level is not None and RISK_RANK[level] > RISK_RANK[floor]:
            floor = level
    return floor


def most_severe(interactions: list[Interaction]) -> Optional[Interaction]:
    found = [i for i in interactions if i.found]
    if not found:
        return None
    return max(found, key=lambda i: (SEVERITY_RANK[i.severity], i.confidence))


# ============================================================================
# OVERRIDES
# ============================================================================

def mentions(text: str, term: str) -> bool:
    """True if ``term`` (or its plural) appears in ``text`` as a whole word."""
    return re.search(rf"\b{re.escape(term)}s?\b", text) is not None


def allergy_conflicts(drugs: list[NormalizedDrug], allergies: list[str]) -> list[str]:
    """
    Allergies that rule out one of the drugs.

    Matches directly by name, by class membership (a penicillin allergy
    covers amoxicillin) and by known cross-reactivity (penicillin to
    cephalosporins, aspirin to NSAIDs). All matching is on whole words:
    an "iron" allergy says nothing about spironolactone.
    """
    conflicts: list[str] = []

    def add(entry: str) -> None:
        if entry not in conflicts:
            conflicts.append(entry)

    for drug in drugs:
        names = drug.all_names()
        classes = set().union(*(drug_classes(n) for n in names))
        for allergy in allergies:
            allergen = allergy.strip().lower()
            if not allergen:
                continue

            if any(mentions(name, allergen) or mentions(allergen, name) for name in names):
                add(allergy)
                continue

            allergy_class = next(
                (cls for keyword, cls in ALLERGY_CLASSES.items() if mentions(allergen, keyword)),
                None
            )
            if allergy_class and allergy_class in classes:
                add(f"{allergy} ({drug.generic_name} belongs to the same class)")
                continue

            for keyword, (cls, note) in ALLERGY_CROSS_REACTIVITY.items():
                if mentions(allergen, keyword) and cls in classes:
                    add(f"{allergy} ({note} with {drug.generic_name})")
                    break

    return conflicts


def duplicate_therapy(
    drugs: list[NormalizedDrug],
    context: Optional[PatientContext],
) -> list[str]:
    duplicates: list[str] = []
    if context is None:
        return duplicates

    for drug in drugs:
        for medication in context.current_medications:
            current = medication.drug_name.strip().lower()
            current = resolve_alias(current) or current
            if current in drug.all_names():
                duplicates.append(f"{drug.generic_name} (already taking)")
                continue
            shared = drug_classes(drug.key) & drug_classes(current) & DUPLICATE_THERAPY_CLASSES
            if shared:
                duplicates.append(
                    f"{drug.generic_name} (duplicate {sorted(shared)[0]} with {medication.drug_name})"
                )
    return duplicates


# ============================================================================
# EXPLANATION & RECOMMENDATIONS
# ============================================================================

def _sentence(text: str) -> str:
    text = text.strip()
    return text if text.endswith(".") else f"{text}."


def build_explanation(
    level: RiskLevel,
    drugs: list[NormalizedDrug],
    interactions: list[Interaction],
    context: Optional[PatientContext],
    patient_score: float,
    conflicts: list[str],
) -> str:
    drug_names = " and ".join(d.generic_name for d in drugs)
    primary = most_severe(interactions)
    parts = []

    if level == RiskLevel.DANGER:
        if primary is not None and primary.severity == Severity.MAJOR:
            parts.append(f"CRITICAL: {drug_names} have a dangerous interaction.")
            parts.append(_sentence(primary.description))
        else:
            parts.append(f"CRITICAL: {drug_names} pose a serious risk for this patient.")
        if conflicts:
            parts.append(f"Patient has a documented allergy: {', '.join(conflicts)}.")
        if patient_score > 0.6:
            parts.append("Patient factors significantly increase risk.")
        parts.append("Immediate action required.")

    elif level == RiskLevel.WARNING:
        parts.append(f"CAUTION: {drug_names} have a moderate interaction risk.")
        if primary is not None:
            parts.append(_sentence(primary.description))
        age = context.demographics.age if context else None
        if age is not None and age >= 65:
            parts.append("Age increases sensitivity.")
        parts.append("Close monitoring recommended.")

    else:
        parts.append(f"{drug_names} can generally be used together safely.")
        if primary is None:
            parts.append("No significant interactions documented.")
        parts.append("Standard monitoring appropriate.")

    return " ".join(parts)


def build_recommendations(
    level: RiskLevel,
    drugs: list[NormalizedDrug],
    interactions: list[Interaction],
    context: Optional[PatientContext],
    conflicts: list[str],
) -> list[str]:
    recommendations: list[str] = []

    def add(item: str) -> None:
        if item not in recommendations:
            recommendations.append(item)

    if level == RiskLevel.DANGER:
        add("DO NOT administer these medications together")
        add("Consult physician or pharmacist immediately")
        add("Document interaction in patient record")
        if any(is_nsaid(d.key) for d in drugs):
            add("Consider acetaminophen for pain relief")
        if any(is_anticoagulant(d.key) for d in drugs):
            add("Check INR before any changes")
            add("Monitor for signs of bleeding")
    elif level == RiskLevel.WARNING:
        add("Use with caution - increased monitoring required")
    else:
        add("Proceed with standard administration")
        add("Routine monitoring appropriate")

    if level in (RiskLevel.DANGER, RiskLevel.WARNING):
        evidence = " ".join(
            f"{i.mechanism} {i.clinical_significance}".lower()
            for i in interactions if i.found
        )
        for keywords, items in MECHANISM_MONITORING:
            if any(keyword in evidence for keyword in keywords):
                for item in items:
                    add(item)

    if level == RiskLevel.WARNING:
        add("Document monitoring plan")
        add("Educate patient on warning signs")

    for conflict in conflicts:
        add(f"Select an alternative agent: patient allergy to {conflict}")

    if context is not None:
        age = context.demographics.age
        egfr = context.lab("eGFR")
        if level != RiskLevel.DANGER and age is not None and age >= 65:
            add("Start with lower doses in elderly")
        if level != RiskLevel.DANGER and egfr is not None and egfr < 60:
            add("Verify renal dosing adjustments")
        history = context.relevant_history
        if history and history.medication_adherence == "poor":
            add("Ensure patient understanding and compliance")
        if age is not None and age >= 65:
            for drug in drugs:
                classes = drug_classes(drug.key)
                for key, note in BEERS_CRITERIA.items():
                    if key == drug.key or key in classes:
                        add(f"Beers criteria ({drug.generic_name}): {note}")

    return recommendations


def calculate_confidence(
    interactions: list[Interaction],
    context: Optional[PatientContext],
) -> float:
    confidence = 0.5
    if any(i.found for i in interactions):
        confidence += 0.2
    if context is not None:
        confidence += 0.2
        if context.lab_values:
            confidence += 0.1
    return round(min(1.0, confidence), 2)


# ============================================================================
# SUBAGENT
# ============================================================================

class RiskAssessor(BaseSubagent):
    """Produces the final RiskAssessment for one pipeline run."""

    task_type = TaskType.RISK_ASSESSMENT
    source = "risk_engine"
    failure_follow_up = ["Manual risk assessment required"]
    failure_warning = "Automated risk assessment failed"
    failure_limitation = "Unable to determine risk level"

    async def run(self, task_input: RiskInput) -> dict[str, Any]:
        return self.assess(task_input.drugs, task_input.interactions, task_input.patient_context)

    def assess(
        self,
        drugs: list[NormalizedDrug],
        interactions: list[Interaction],
        context: Optional[PatientContext] = None,
    ) -> dict[str, Any]:
        decisions: list[str] = []
        warnings: list[str] = []
        limitations: list[str] = []

        interaction_score = score_interactions(interactions, decisions)
        patient_score = score_patient_factors(context, decisions)
        drug_score = score_drug_characteristics(drugs, decisions)
        clinical_score = score_clinical_context(drugs, context, decisions, warnings)

        overall = min(1.0, (
            interaction_score * WEIGHTS["interaction"]
            + patient_score * WEIGHTS["patient_factors"]
            + drug_score * WEIGHTS["drug_characteristics"]
            + clinical_score * WEIGHTS["clinical_context"]
        ))
        decisions.append(f"Overall risk score: {overall * 100:.1f}%")

        level = classify(overall)

        floor = severity_floor(interactions)
        if RISK_RANK[floor] > RISK_RANK[level]:
            decisions.append(f"Raised {level.value} to {floor.value} by interaction severity")
            level = floor

        conflicts = allergy_conflicts(drugs, context.allergies) if context else []
        if conflicts:
            warnings.append(f"Patient has allergies to: {', '.join(conflicts)}")
            decisions.append("Allergy conflict forces DANGER")
            level = RiskLevel.DANGER

        duplicates = duplicate_therapy(drugs, context)
        if duplicates:
            warnings.append(f"Duplicate therapy detected: {', '.join(duplicates)}")

        if context is None:
            limitations.append("Assessment is not personalised: no patient context")

        follow_up = list(FOLLOW_UP[level])
        confidence = calculate_confidence(interactions, context)
        assessment = RiskAssessment(
            risk_level=level,
            explanation=build_explanation(
                level, drugs, interactions, context, patient_score, conflicts
            ),
            recommendations=build_recommendations(
                level, drugs, interactions, context, conflicts
            ),
            warnings=warnings,
            follow_up=follow_up,
            risk_scores=RiskScores(
                overall=round(overall, 3),
                interaction=round(interaction_score, 3),
                patient_factors=round(patient_score, 3),
                drug_characteristics=round(drug_score, 3),
                clinical_context=round(clinical_score, 3),
            ),
            confidence=confidence,
        )

        logger.debug(
            "Risk assessed",
            extra={"risk_level": level.value, "overall": round(overall, 3)}
        )
        return {
            "result": assessment,
            "confidence": confidence,
            "source": self.source,
            "decisions": decisions,
            "warnings": warnings,
            "limitations": limitations,
            "follow_up": follow_up,
        }
