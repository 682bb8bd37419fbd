"""
Task envelope exchanged between the orchestrator and its subagents.

``Task.input`` is a tagged union keyed on ``kind`` so each subagent receives
exactly the input shape it understands.
"""

import uuid
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field

from medguard.schemas.clinical import Interaction, NormalizedDrug, PatientContext


class TaskType(str, Enum):
    NORMALIZE = "normalize"
    INTERACTION_CHECK = "interaction_check"
    CONTEXT_RETRIEVAL = "context_retrieval"
    RISK_ASSESSMENT = "risk_assessment"


class TaskStatus(str, Enum):
    COMPLETE = "complete"
    FAILED = "failed"


class TaskConstraints(BaseModel):
    timeout_ms: int = Field(default=3000, gt=0)
    max_retries: int = Field(default=2, ge=0)


class OutputSpec(BaseModel):
    format: str = "json"
    required_fields: list[str] = Field(default_factory=list)


# ============================================================================
# TASK INPUTS
# ============================================================================

class NormalizeInput(BaseModel):
    kind: Literal["normalize"] = "normalize"
    drug_name: str = Field(..., min_length=1)


class InteractionInput(BaseModel):
    kind: Literal["interaction_check"] = "interaction_check"
    drug1: NormalizedDrug
    drug2: NormalizedDrug


class ContextInput(BaseModel):
    kind: Literal["context_retrieval"] = "context_retrieval"
    patient_id: str = Field(..., min_length=1)


class RiskInput(BaseModel):
    kind: Literal["risk_assessment"] = "risk_assessment"
    drugs: list[NormalizedDrug]
    interactions: list[Interaction]
    patient_context: Optional[PatientContext] = None


TaskInput = Annotated[
    Union[NormalizeInput, InteractionInput, ContextInput, RiskInput],
    Field(discriminator="kind"),
]


class Task(BaseModel):
    """A single unit of work for one subagent. Immutable once created."""

    task_id: str
    task_type: TaskType
    objective: str
    input: TaskInput
    constraints: TaskConstraints = Field(default_factory=TaskConstraints)
    output_spec: OutputSpec = Field(default_factory=OutputSpec)

    class Config:
        frozen = True

    @classmethod
    def create(
        cls,
        task_type: TaskType,
        objective: str,
        input: Any,
        timeout_ms: int,
        max_retries: int = 2,
        required_fields: Optional[list[str]] = None,
    ) -> "Task":
        return cls(
            task_id=f"{task_type.value}_{uuid.uuid4().hex[:12]}",
            task_type=task_type,
            objective=objective,
            input=input,
            constraints=TaskConstraints(timeout_ms=timeout_ms, max_retries=max_retries),
            output_spec=OutputSpec(required_fields=required_fields or []),
        )


# ============================================================================
# TASK RESULTS
# ============================================================================

class TaskMetadata(BaseModel):
    processing_time_ms: float = 0.0
    confidence: float = Field(default=0.0, ge=0, le=1)
    source: str = ""
    decisions_made: list[str] = Field(default_factory=list)


class TaskRecommendations(BaseModel):
    follow_up: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    limitations: list[str] = Field(default_factory=list)


class TaskResult(BaseModel):
    """Outcome of one Task. ``result`` is set iff ``status`` is complete."""

    task_id: str
    status: TaskStatus
    result: Optional[Any] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    metadata: TaskMetadata = Field(default_factory=TaskMetadata)
    recommendations: TaskRecommendations = Field(default_factory=TaskRecommendations)

    @property
    def ok(self) -> bool:
        return self.status == TaskStatus.COMPLETE
