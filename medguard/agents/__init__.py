"""Pipeline subagents and the orchestrator that drives them."""

from medguard.agents.base import BaseSubagent
from medguard.agents.drug_normalizer import DrugNormalizer
from medguard.agents.interaction_checker import InteractionChecker
from medguard.agents.orchestrator import InteractionOrchestrator, PipelineState, Stage, next_stage
from medguard.agents.patient_context import PatientContextProvider
from medguard.agents.risk_assessor import RiskAssessor

__all__ = [
    "BaseSubagent",
    "DrugNormalizer",
    "InteractionChecker",
    "InteractionOrchestrator",
    "PatientContextProvider",
    "PipelineState",
    "RiskAssessor",
    "Stage",
    "next_stage",
]
