"""Pydantic schemas for tasks, clinical data and request/response validation."""

from medguard.schemas.clinical import (
    Condition,
    Demographics,
    Interaction,
    LabValue,
    Medication,
    NormalizedDrug,
    PatientContext,
    ReactionCount,
    RelevantHistory,
    RiskAssessment,
    RiskFactor,
    RiskLevel,
    RiskScores,
    Severity,
)
from medguard.schemas.common import (
    CacheStatsResponse,
    ErrorResponse,
    HealthResponse,
)
from medguard.schemas.interaction import (
    BatchCheckRequest,
    BatchCheckResponse,
    BatchItemResult,
    ErrorEntry,
    InteractionCheckRequest,
    InteractionCheckResponse,
    NormalizeRequest,
    ProcessingStep,
)
from medguard.schemas.tasks import (
    ContextInput,
    InteractionInput,
    NormalizeInput,
    RiskInput,
    Task,
    TaskMetadata,
    TaskRecommendations,
    TaskResult,
    TaskStatus,
    TaskType,
)

__all__ = [
    # Clinical
    "Condition",
    "Demographics",
    "Interaction",
    "LabValue",
    "Medication",
    "NormalizedDrug",
    "PatientContext",
    "ReactionCount",
    "RelevantHistory",
    "RiskAssessment",
    "RiskFactor",
    "RiskLevel",
    "RiskScores",
    "Severity",
    # Common
    "CacheStatsResponse",
    "ErrorResponse",
    "HealthResponse",
    # Interaction check
    "BatchCheckRequest",
    "BatchCheckResponse",
    "BatchItemResult",
    "ErrorEntry",
    "InteractionCheckRequest",
    "InteractionCheckResponse",
    "NormalizeRequest",
    "ProcessingStep",
    # Tasks
    "ContextInput",
    "InteractionInput",
    "NormalizeInput",
    "RiskInput",
    "Task",
    "TaskMetadata",
    "TaskRecommendations",
    "TaskResult",
    "TaskStatus",
    "TaskType",
]
