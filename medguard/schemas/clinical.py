"""
Clinical domain models: normalized drugs, interactions, patient context and
the final risk assessment.
"""

import datetime as dt
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


# ============================================================================
# ENUMS
# ============================================================================

class Severity(str, Enum):
    """Strength of a drug-drug interaction."""
    MAJOR = "MAJOR"
    MODERATE = "MODERATE"
    MINOR = "MINOR"
    UNKNOWN = "UNKNOWN"


SEVERITY_RANK = {
    Severity.UNKNOWN: 0,
    Severity.MINOR: 1,
    Severity.MODERATE: 2,
    Severity.MAJOR: 3,
}


class RiskLevel(str, Enum):
    """Final classification returned to the caller."""
    SAFE = "SAFE"
    WARNING = "WARNING"
    DANGER = "DANGER"
    ERROR = "ERROR"


RISK_RANK = {
    RiskLevel.SAFE: 0,
    RiskLevel.WARNING: 1,
    RiskLevel.DANGER: 2,
}


# ============================================================================
# DRUGS & INTERACTIONS
# ============================================================================

class NormalizedDrug(BaseModel):
    """A free-text drug name resolved to a canonical identifier."""

    original_input: str = Field(..., description="Name as supplied by the caller")
    rxcui: str = Field(..., description="RxNorm concept id or synthetic:<generic>")
    generic_name: str = Field(..., description="Canonical generic name (lower case)")
    brand_names: list[str] = Field(default_factory=list)
    active_ingredients: list[str] = Field(default_factory=list)
    confidence: float = Field(..., ge=0, le=1)
    match_type: str = Field(default="exact", description="approximate, exact, spelling or synthetic")

    class Config:
        frozen = True

    @property
    def key(self) -> str:
        """Case-insensitive join key used across the pipeline."""
        return self.generic_name.lower()

    @property
    def is_synthetic(self) -> bool:
        return self.rxcui.startswith("synthetic:")

    def all_names(self) -> set[str]:
        """Generic, brand and ingredient names, lower-cased."""
        names = {self.key, self.original_input.lower()}
        names.update(b.lower() for b in self.brand_names)
        names.update(i.lower() for i in self.active_ingredients)
        return names


class ReactionCount(BaseModel):
    """A co-reported adverse reaction and how often it appeared."""
    reaction: str
    count: int


class Interaction(BaseModel):
    """Interaction verdict for one unordered drug pair."""

    drug1: str
    drug2: str
    severity: Severity
    mechanism: str
    description: str
    clinical_significance: str
    confidence: float = Field(..., ge=0, le=1)
    found: bool = True
    source: str = Field(default="known_table", description="known_table, openfda, fallback, cache")
    adverse_event_count: int = 0
    serious_event_count: int = 0
    common_reactions: list[ReactionCount] = Field(default_factory=list)

    @property
    def pair_key(self) -> tuple[str, str]:
        a, b = self.drug1.lower(), self.drug2.lower()
        return (a, b) if a <= b else (b, a)


# ============================================================================
# PATIENT CONTEXT
# ============================================================================

class Demographics(BaseModel):
    age: Optional[int] = None
    gender: Optional[str] = None
    weight_kg: Optional[float] = None
    height_cm: Optional[float] = None
    bmi: Optional[float] = None


class Condition(BaseModel):
    condition: str
    status: str = "active"


class Medication(BaseModel):
    drug_name: str
    dose: Optional[str] = None
    frequency: Optional[str] = None
    started: Optional[dt.date] = None
    duration_days: Optional[int] = None
    interaction_potential: str = "low"


class LabValue(BaseModel):
    value: float
    unit: Optional[str] = None
    date: Optional[dt.date] = None
    target_range: Optional[str] = None
    age_days: Optional[int] = None
    clinical_significance: list[str] = Field(default_factory=list)


class RiskFactor(BaseModel):
    factor: str
    impact: str


class RelevantHistory(BaseModel):
    hospitalizations: list[dict[str, Any]] = Field(default_factory=list)
    adverse_drug_reactions: list[dict[str, Any]] = Field(default_factory=list)
    medication_adherence: str = "unknown"
    recent_changes: list[dict[str, Any]] = Field(default_factory=list)


class PatientContext(BaseModel):
    """Read-only patient snapshot with derived risk fields."""

    patient_id: str
    demographics: Demographics = Field(default_factory=Demographics)
    allergies: list[str] = Field(default_factory=list)
    conditions: list[Condition] = Field(default_factory=list)
    current_medications: list[Medication] = Field(default_factory=list)
    lab_values: dict[str, LabValue] = Field(default_factory=dict)
    risk_factors: list[RiskFactor] = Field(default_factory=list)
    relevant_history: Optional[RelevantHistory] = None
    interaction_considerations: list[str] = Field(default_factory=list)

    class Config:
        frozen = True

    def lab(self, name: str) -> Optional[float]:
        """Numeric lab value by name, case-insensitive."""
        for key, lab in self.lab_values.items():
            if key.lower() == name.lower():
                return lab.value
        return None

    def has_condition(self, *keywords: str) -> bool:
        return any(
            keyword.lower() in c.condition.lower()
            for c in self.conditions
            for keyword in keywords
        )


# ============================================================================
# RISK ASSESSMENT
# ============================================================================

class RiskScores(BaseModel):
    """Component scores, each in [0, 1]."""
    overall: float = Field(..., ge=0, le=1)
    interaction: float = Field(..., ge=0, le=1)
    patient_factors: float = Field(..., ge=0, le=1)
    drug_characteristics: float = Field(..., ge=0, le=1)
    clinical_context: float = Field(..., ge=0, le=1)


class RiskAssessment(BaseModel):
    """Terminal artifact of a successful pipeline run."""

    risk_level: RiskLevel
    explanation: str
    recommendations: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    follow_up: list[str] = Field(default_factory=list)
    risk_scores: Optional[RiskScores] = None
    confidence: float = Field(default=0.0, ge=0, le=1)

    class Config:
        frozen = True
