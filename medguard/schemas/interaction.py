"""
Request and response schemas for the interaction check endpoints.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from medguard.schemas.clinical import (
    Interaction,
    NormalizedDrug,
    RiskLevel,
    RiskScores,
)


class InteractionCheckRequest(BaseModel):
    """Request body for POST /interactions/check."""

    drugs: list[str] = Field(
        ...,
        min_length=1,
        description="Free-text drug names (brand or generic)"
    )
    patient_id: Optional[str] = Field(
        None,
        description="Optional patient id for personalised assessment"
    )

    @field_validator("drugs")
    @classmethod
    def strip_names(cls, v: list[str]) -> list[str]:
        return [name.strip() for name in v]

    class Config:
        json_schema_extra = {
            "example": {
                "drugs": ["Coumadin", "aspirin"],
                "patient_id": "P001"
            }
        }


class NormalizeRequest(BaseModel):
    """Request body for POST /drugs/normalize."""

    drug_name: str = Field(..., min_length=1, max_length=200)

    class Config:
        json_schema_extra = {"example": {"drug_name": "Zoloft"}}


class ProcessingStep(BaseModel):
    """Audit record for one pipeline stage execution."""

    node: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    duration_ms: float = 0.0
    details: dict[str, Any] = Field(default_factory=dict)


class ErrorEntry(BaseModel):
    """Non-fatal error collected during a pipeline run."""

    node: str
    error: str
    error_type: Optional[str] = None
    subject: Optional[str] = None


class InteractionCheckResponse(BaseModel):
    """Caller-facing result of one interaction check."""

    risk_level: RiskLevel
    explanation: str
    recommendations: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    follow_up: list[str] = Field(default_factory=list)
    risk_scores: Optional[RiskScores] = None
    confidence: float = Field(default=0.0, ge=0, le=1)

    drugs: list[NormalizedDrug] = Field(default_factory=list)
    interactions: list[Interaction] = Field(default_factory=list)
    patient_context_used: bool = False
    errors: list[ErrorEntry] = Field(default_factory=list)
    error_type: Optional[str] = None
    processing_steps: list[ProcessingStep] = Field(default_factory=list)
    processing_time_ms: float = 0.0
    task_count: int = 0

    class Config:
        json_schema_extra = {
            "example": {
                "risk_level": "DANGER",
                "explanation": "CRITICAL: warfarin and aspirin have a dangerous interaction. "
                               "Increased bleeding risk due to combined anticoagulant and "
                               "antiplatelet effects. Immediate action required.",
                "recommendations": [
                    "DO NOT administer these medications together",
                    "Consult physician or pharmacist immediately"
                ],
                "confidence": 0.7,
                "patient_context_used": False,
                "processing_time_ms": 412.5,
                "task_count": 4
            }
        }


class BatchCheckRequest(BaseModel):
    """Request body for POST /interactions/batch."""

    requests: list[InteractionCheckRequest] = Field(
        ...,
        min_length=1,
        description="Independent interaction checks, run concurrently"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "requests": [
                    {"drugs": ["warfarin", "aspirin"]},
                    {"drugs": ["sertraline", "tramadol"], "patient_id": "P002"}
                ]
            }
        }


class BatchItemResult(BaseModel):
    """Outcome of one check in a batch, keyed by its position in the request."""

    index: int
    success: bool
    result: Optional[InteractionCheckResponse] = None
    error: Optional[str] = None


class BatchCheckResponse(BaseModel):
    """Per-item results plus success/failure totals."""

    results: list[BatchItemResult]
    total: int
    successful: int
    failed: int
    processing_time_ms: float = 0.0
