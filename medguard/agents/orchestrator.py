"""
Interaction check orchestrator.

Runs the staged pipeline

    parse_input -> normalize_drugs -> [get_patient_context]
        -> check_interactions -> assess_risk -> format_response -> done

fanning normalization and pair checks out to subagents in parallel. Stage
failures draw on one retry budget shared by the whole request; once it is
spent, or for errors that retrying cannot fix, the run ends with an ERROR
result. The whole run is bounded by a top-level timeout.
"""

import asyncio
import time
from datetime import datetime, timezone
from enum import Enum
from itertools import combinations
from typing import Any, Optional

from medguard.agents.drug_normalizer import DrugNormalizer
from medguard.agents.interaction_checker import InteractionChecker
from medguard.agents.patient_context import PatientContextProvider
from medguard.agents.risk_assessor import RiskAssessor
from medguard.config import Settings, get_settings
from medguard.core.exceptions import (
    RETRYABLE_ERROR_TYPES,
    LogicError,
    MedGuardError,
    NotFoundError,
    PipelineTimeoutError,
    ProviderError,
    ValidationError,
)
from medguard.core.logging import correlation_id, get_logger, new_correlation_id
from medguard.core.metrics import PIPELINE_RUNS, STAGE_DURATION, STAGE_RETRIES
from medguard.schemas.clinical import (
    Interaction,
    NormalizedDrug,
    PatientContext,
    RiskAssessment,
    RiskLevel,
)
from medguard.schemas.interaction import (
    BatchCheckResponse,
    BatchItemResult,
    ErrorEntry,
    InteractionCheckRequest,
    InteractionCheckResponse,
    ProcessingStep,
)
from medguard.schemas.tasks import (
    ContextInput,
    InteractionInput,
    NormalizeInput,
    RiskInput,
    Task,
    TaskResult,
    TaskType,
)

logger = get_logger(__name__)

ERROR_CLASSES = {
    cls.error_type: cls
    for cls in (ValidationError, ProviderError, NotFoundError, PipelineTimeoutError, LogicError)
}

MANUAL_VERIFICATION = "Manual verification required"


def error_from_result(result: TaskResult) -> MedGuardError:
    """Rebuild the exception a failed TaskResult stands for."""
    cls = ERROR_CLASSES.get(result.error_type or "", LogicError)
    return cls(result.error or "Task failed")


class Stage(str, Enum):
    PARSE_INPUT = "parse_input"
    NORMALIZE_DRUGS = "normalize_drugs"
    GET_PATIENT_CONTEXT = "get_patient_context"
    CHECK_INTERACTIONS = "check_interactions"
    ASSESS_RISK = "assess_risk"
    FORMAT_RESPONSE = "format_response"
    DONE = "done"


class PipelineState:
    """Mutable, request-scoped state threaded through the stages."""

    def __init__(
        self,
        raw_drugs: list[str],
        patient_id: Optional[str] = None,
        max_retries: int = 2,
    ):
        self.raw_drugs = list(raw_drugs)
        self.patient_id = patient_id
        self.max_retries = max_retries

        self.stage = Stage.PARSE_INPUT
        self.drug_names: list[str] = []
        self.drugs: list[NormalizedDrug] = []
        self.patient_context: Optional[PatientContext] = None
        self.interactions: dict[tuple[str, str], Interaction] = {}
        self.assessment: Optional[RiskAssessment] = None

        self.errors: list[ErrorEntry] = []
        self.warnings: list[str] = []
        self.processing_steps: list[ProcessingStep] = []
        self.task_results: dict[str, TaskResult] = {}
        self.total_time_ms = 0.0

        self.retries = 0
        self.retry_pending = False
        self.failure: Optional[MedGuardError] = None
        self.failed_stage: Optional[Stage] = None

    def record(self, result: TaskResult) -> None:
        self.task_results[result.task_id] = result

    def add_step(self, stage: Stage, duration_ms: float, details: dict[str, Any]) -> None:
        self.processing_steps.append(ProcessingStep(
            node=stage.value,
            timestamp=datetime.now(timezone.utc),
            duration_ms=round(duration_ms, 2),
            details=details,
        ))


_FORWARD = {
    Stage.PARSE_INPUT: Stage.NORMALIZE_DRUGS,
    Stage.GET_PATIENT_CONTEXT: Stage.CHECK_INTERACTIONS,
    Stage.CHECK_INTERACTIONS: Stage.ASSESS_RISK,
    Stage.ASSESS_RISK: Stage.FORMAT_RESPONSE,
    Stage.FORMAT_RESPONSE: Stage.DONE,
}


def next_stage(stage: Stage, state: PipelineState) -> Stage:
    """Transition function. Reads ``state``, never changes it."""
    if stage in (Stage.FORMAT_RESPONSE, Stage.DONE):
        return Stage.DONE
    if state.retry_pending:
        return stage
    if state.failure is not None:
        return Stage.FORMAT_RESPONSE
    if stage == Stage.NORMALIZE_DRUGS:
        return Stage.GET_PATIENT_CONTEXT if state.patient_id else Stage.CHECK_INTERACTIONS
    return _FORWARD[stage]


class InteractionOrchestrator:
    """
    Entry point for interaction checks, batches of them, and single-drug
    normalization.
    """

    def __init__(
        self,
        normalizer: DrugNormalizer,
        context_provider: PatientContextProvider,
        checker: InteractionChecker,
        assessor: RiskAssessor,
        settings: Optional[Settings] = None,
    ):
        self.normalizer = normalizer
        self.context_provider = context_provider
        self.checker = checker
        self.assessor = assessor
        self.settings = settings or get_settings()
        self._handlers = {
            Stage.PARSE_INPUT: self._parse_input,
            Stage.NORMALIZE_DRUGS: self._normalize_drugs,
            Stage.GET_PATIENT_CONTEXT: self._get_patient_context,
            Stage.CHECK_INTERACTIONS: self._check_interactions,
            Stage.ASSESS_RISK: self._assess_risk,
            Stage.FORMAT_RESPONSE: self._format_response,
        }

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def check_interaction(
        self,
        drugs: list[str],
        patient_id: Optional[str] = None,
    ) -> InteractionCheckResponse:
        """
        Run the full pipeline for a drug list.

        Never raises for pipeline failures: they come back as an ERROR
        response naming the failed stage.

        Args:
            drugs: Free-text drug names.
            patient_id: Optional patient id for personalised assessment.
        """
        token = None
        if correlation_id.get() is None:
            token = correlation_id.set(new_correlation_id())
        try:
            return await self._check(drugs, patient_id)
        finally:
            if token is not None:
                correlation_id.reset(token)

    async def _check(self, drugs: list[str], patient_id: Optional[str]) -> InteractionCheckResponse:
        state = PipelineState(drugs, patient_id, max_retries=self.settings.MAX_RETRIES)
        timeout_ms = self.settings.PIPELINE_TIMEOUT_MS
        started = time.perf_counter()

        logger.info(
            "Starting interaction check",
            extra={"drugs": drugs, "patient_id": patient_id}
        )

        try:
            await asyncio.wait_for(self._run(state), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.error(
                f"Interaction check timed out after {timeout_ms}ms",
                extra={"stage": state.stage.value}
            )
            state.failure = PipelineTimeoutError(
                f"Interaction check timed out after {timeout_ms}ms"
            )
            state.failed_stage = state.stage
            state.total_time_ms = round((time.perf_counter() - started) * 1000, 2)

        response = self._build_response(state)
        PIPELINE_RUNS.labels(risk_level=response.risk_level.value).inc()
        logger.info(
            "Interaction check complete",
            extra={
                "risk_level": response.risk_level.value,
                "processing_time_ms": response.processing_time_ms,
                "retries": state.retries,
            }
        )
        return response

    async def normalize_drug(self, name: str) -> NormalizedDrug:
        """
        Normalize one drug name.

        Raises:
            ValidationError: Empty name.
            NotFoundError: Name could not be resolved.
            ProviderError: RxNorm unavailable and no alias fallback.
        """
        if not name or not name.strip():
            raise ValidationError("Drug name must not be empty")

        task = Task.create(
            TaskType.NORMALIZE,
            "Normalize drug name to RxCUI",
            NormalizeInput(drug_name=name.strip()),
            timeout_ms=self.settings.NORMALIZE_TIMEOUT_MS,
            max_retries=self.settings.MAX_RETRIES,
            required_fields=["rxcui", "generic_name", "brand_names"],
        )
        result = await self.normalizer.execute(task)
        if not result.ok:
            raise error_from_result(result)
        return result.result

    async def check_batch(self, requests: list[InteractionCheckRequest]) -> BatchCheckResponse:
        """
        Run independent interaction checks concurrently.

        An item succeeds when its check ends in a risk level other than
        ERROR. Failed items keep their ERROR response alongside the message.

        Raises:
            ValidationError: Empty batch or more than MAX_BATCH_SIZE items.
        """
        if not requests:
            raise ValidationError("Batch must contain at least one request")
        if len(requests) > self.settings.MAX_BATCH_SIZE:
            raise ValidationError(
                f"Batch of {len(requests)} exceeds the limit of {self.settings.MAX_BATCH_SIZE}",
                details={"max_batch_size": self.settings.MAX_BATCH_SIZE}
            )

        started = time.perf_counter()
        responses = await asyncio.gather(*(
            self.check_interaction(request.drugs, request.patient_id)
            for request in requests
        ))

        results = []
        for index, response in enumerate(responses):
            success = response.risk_level != RiskLevel.ERROR
            results.append(BatchItemResult(
                index=index,
                success=success,
                result=response,
                error=None if success else response.explanation,
            ))

        successful = sum(1 for r in results if r.success)
        logger.info(
            "Batch check complete",
            extra={"total": len(results), "successful": successful}
        )
        return BatchCheckResponse(
            results=results,
            total=len(results),
            successful=successful,
            failed=len(results) - successful,
            processing_time_ms=round((time.perf_counter() - started) * 1000, 2),
        )

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _run(self, state: PipelineState) -> None:
        stage = Stage.PARSE_INPUT
        while stage != Stage.DONE:
            state.stage = stage
            state.retry_pending = False
            started = time.perf_counter()

            try:
                details = await self._handlers[stage](state)
            except MedGuardError as e:
                duration_ms = (time.perf_counter() - started) * 1000
                state.add_step(stage, duration_ms, {
                    "error": e.message,
                    "error_type": e.error_type,
                    "attempt": state.retries + 1,
                })
                self._handle_stage_error(state, stage, e)
            else:
                duration_ms = (time.perf_counter() - started) * 1000
                state.add_step(stage, duration_ms, details)

            STAGE_DURATION.labels(stage=stage.value).observe(duration_ms / 1000)
            following = next_stage(stage, state)
            logger.debug(
                f"Stage {stage.value} -> {following.value}",
                extra={"duration_ms": round(duration_ms, 2)}
            )
            stage = following

    def _handle_stage_error(self, state: PipelineState, stage: Stage, error: MedGuardError) -> None:
        state.errors.append(ErrorEntry(
            node=stage.value,
            error=error.message,
            error_type=error.error_type,
        ))

        if error.error_type in RETRYABLE_ERROR_TYPES and state.retries < state.max_retries:
            state.retries += 1
            state.retry_pending = True
            STAGE_RETRIES.labels(stage=stage.value).inc()
            logger.warning(
                f"Retrying stage {stage.value}: {error.message}",
                extra={"retry": state.retries, "max_retries": state.max_retries}
            )
            return

        logger.error(
            f"Stage {stage.value} failed: {error.message}",
            extra={"error_type": error.error_type, "retries": state.retries}
        )
        state.failure = error
        state.failed_stage = stage

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _parse_input(self, state: PipelineState) -> dict[str, Any]:
        if state.patient_id is not None and not state.patient_id.strip():
            raise ValidationError("patient_id must not be empty when supplied")

        names: list[str] = []
        for raw in state.raw_drugs:
            name = raw.strip().lower() if isinstance(raw, str) else ""
            if name and name not in names:
                names.append(name)

        if len(names) < 2:
            raise ValidationError(
                "At least 2 drugs required for interaction check",
                details={"drugs": state.raw_drugs}
            )
        if len(names) > self.settings.MAX_DRUGS:
            raise ValidationError(
                f"At most {self.settings.MAX_DRUGS} drugs per interaction check",
                details={"count": len(names)}
            )

        state.drug_names = names
        state.patient_id = state.patient_id.strip() if state.patient_id else None
        return {"input": state.raw_drugs, "output": names}

    async def _normalize_drugs(self, state: PipelineState) -> dict[str, Any]:
        tasks = [
            Task.create(
                TaskType.NORMALIZE,
                "Normalize drug name to RxCUI",
                NormalizeInput(drug_name=name),
                timeout_ms=self.settings.NORMALIZE_TIMEOUT_MS,
                max_retries=self.settings.MAX_RETRIES,
                required_fields=["rxcui", "generic_name", "brand_names"],
            )
            for name in state.drug_names
        ]
        results = await asyncio.gather(*(self.normalizer.execute(task) for task in tasks))

        drugs: list[NormalizedDrug] = []
        errors: list[ErrorEntry] = []
        merged: list[str] = []
        for name, result in zip(state.drug_names, results):
            state.record(result)
            if not result.ok:
                errors.append(ErrorEntry(
                    node=Stage.NORMALIZE_DRUGS.value,
                    error=result.error or "Normalization failed",
                    error_type=result.error_type,
                    subject=name,
                ))
                continue
            drug = result.result
            if any(existing.key == drug.key for existing in drugs):
                state.warnings.append(
                    f'"{name}" resolves to {drug.generic_name}, which is already in the list'
                )
                merged.append(f"{name} is {drug.generic_name}")
                continue
            drugs.append(drug)
            state.warnings.extend(result.recommendations.warnings)

        if len(drugs) < 2:
            raise self._normalization_failure(drugs, errors, merged)

        state.drugs = drugs
        state.errors.extend(errors)
        return {
            "tasks_sent": len(tasks),
            "successful": len(drugs),
            "failed": len(errors),
        }

    def _normalization_failure(
        self,
        drugs: list[NormalizedDrug],
        errors: list[ErrorEntry],
        merged: list[str],
    ) -> MedGuardError:
        if not errors:
            return ValidationError(
                f"Fewer than 2 distinct drugs after normalization: {', '.join(merged)}",
                details={"merged": merged}
            )

        summary = "; ".join(f"{e.subject}: {e.error}" for e in errors)
        message = f"Failed to normalize enough drugs ({len(drugs)} of 2 required resolved). Errors: {summary}"
        if merged:
            message = f"{message}. Duplicates: {', '.join(merged)}"
        details = {"errors": [e.model_dump() for e in errors]}

        error_types = {e.error_type for e in errors}
        if error_types <= {NotFoundError.error_type, ValidationError.error_type}:
            return ValidationError(message, details=details)
        if PipelineTimeoutError.error_type in error_types:
            return PipelineTimeoutError(message, details=details)
        if ProviderError.error_type in error_types:
            return ProviderError(message, details=details)
        return LogicError(message, details=details)

    async def _get_patient_context(self, state: PipelineState) -> dict[str, Any]:
        task = Task.create(
            TaskType.CONTEXT_RETRIEVAL,
            "Retrieve patient medical history and current medications",
            ContextInput(patient_id=state.patient_id),
            timeout_ms=self.settings.CONTEXT_TIMEOUT_MS,
            max_retries=1,
            required_fields=["conditions", "current_medications", "allergies", "lab_values"],
        )
        result = await self.context_provider.execute(task)
        state.record(result)

        if result.ok:
            state.patient_context = result.result
            state.warnings.extend(result.recommendations.warnings)
        else:
            logger.warning(
                f"Continuing without patient context: {result.error}",
                extra={"patient_id": state.patient_id}
            )
            state.warnings.append(f"Patient context unavailable: {result.error}")
            state.errors.append(ErrorEntry(
                node=Stage.GET_PATIENT_CONTEXT.value,
                error=result.error or "Failed to retrieve patient context",
                error_type=result.error_type,
                subject=state.patient_id,
            ))

        return {
            "patient_id": state.patient_id,
            "context_retrieved": result.ok,
        }

    async def _check_interactions(self, state: PipelineState) -> dict[str, Any]:
        pairs = list(combinations(state.drugs, 2))
        tasks = [
            Task.create(
                TaskType.INTERACTION_CHECK,
                "Check for drug-drug interactions",
                InteractionInput(drug1=a, drug2=b),
                timeout_ms=self.settings.INTERACTION_TIMEOUT_MS,
                max_retries=self.settings.MAX_RETRIES,
                required_fields=["severity", "description", "mechanism"],
            )
            for a, b in pairs
        ]
        results = await asyncio.gather(*(self.checker.execute(task) for task in tasks))

        interactions: dict[tuple[str, str], Interaction] = {}
        failures: list[ErrorEntry] = []
        for (a, b), result in zip(pairs, results):
            state.record(result)
            if result.ok:
                interaction = result.result
                interactions[interaction.pair_key] = interaction
                continue
            failures.append(ErrorEntry(
                node=Stage.CHECK_INTERACTIONS.value,
                error=result.error or "Interaction check failed",
                error_type=result.error_type,
                subject=f"{a.key}|{b.key}",
            ))

        retryable = [f for f in failures if f.error_type in RETRYABLE_ERROR_TYPES]
        if pairs and not interactions and retryable:
            cls = ERROR_CLASSES[retryable[0].error_type]
            raise cls(
                f"All {len(pairs)} interaction checks failed: {retryable[0].error}",
                details={"errors": [f.model_dump() for f in failures]}
            )

        state.interactions = interactions
        state.errors.extend(failures)
        for failure in failures:
            a, b = failure.subject.split("|", 1)
            state.warnings.append(f"Interaction between {a} and {b} could not be verified")

        return {
            "pairs_checked": len(pairs),
            "interactions_found": sum(1 for i in interactions.values() if i.found),
            "failed": len(failures),
        }

    async def _assess_risk(self, state: PipelineState) -> dict[str, Any]:
        task = Task.create(
            TaskType.RISK_ASSESSMENT,
            "Determine overall risk level and provide recommendations",
            RiskInput(
                drugs=state.drugs,
                interactions=list(state.interactions.values()),
                patient_context=state.patient_context,
            ),
            timeout_ms=self.settings.RISK_TIMEOUT_MS,
            max_retries=1,
            required_fields=["risk_level", "explanation", "recommendations"],
        )
        result = await self.assessor.execute(task)
        state.record(result)

        if not result.ok:
            raise error_from_result(result)

        state.assessment = result.result
        return {"risk_level": state.assessment.risk_level.value}

    async def _format_response(self, state: PipelineState) -> dict[str, Any]:
        state.total_time_ms = round(
            sum(step.duration_ms for step in state.processing_steps), 2
        )
        return {"total_time_ms": state.total_time_ms}

    # ------------------------------------------------------------------
    # Response
    # ------------------------------------------------------------------

    def _build_response(self, state: PipelineState) -> InteractionCheckResponse:
        common = {
            "drugs": state.drugs,
            "interactions": list(state.interactions.values()),
            "patient_context_used": state.patient_context is not None,
            "errors": state.errors,
            "processing_steps": state.processing_steps,
            "processing_time_ms": state.total_time_ms,
            "task_count": len(state.task_results),
        }

        if state.failure is not None or state.assessment is None:
            error = state.failure or LogicError("Pipeline ended without a risk assessment")
            stage = (state.failed_stage or state.stage).value
            recommendations = [MANUAL_VERIFICATION]
            if isinstance(error, ValidationError):
                recommendations.append("Check the drug names and resubmit")
            else:
                recommendations.append("Consult a pharmacist before co-administering")
                recommendations.append("Retry the request")
            return InteractionCheckResponse(
                risk_level=RiskLevel.ERROR,
                explanation=f"Unable to complete interaction check: {error.error_type} "
                            f"during {stage}. {error.message}",
                recommendations=recommendations,
                warnings=state.warnings,
                follow_up=["Manual review recommended"],
                confidence=0.0,
                error_type=error.error_type,
                **common,
            )

        assessment = state.assessment
        warnings = list(assessment.warnings)
        for warning in state.warnings:
            if warning not in warnings:
                warnings.append(warning)
        return InteractionCheckResponse(
            risk_level=assessment.risk_level,
            explanation=assessment.explanation,
            recommendations=assessment.recommendations,
            warnings=warnings,
            follow_up=assessment.follow_up,
            risk_scores=assessment.risk_scores,
            confidence=assessment.confidence,
            **common,
        )
