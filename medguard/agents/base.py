"""
Base class for pipeline subagents.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any

from medguard.core.exceptions import LogicError, MedGuardError, PipelineTimeoutError
from medguard.core.logging import get_logger
from medguard.schemas.tasks import (
    Task,
    TaskMetadata,
    TaskRecommendations,
    TaskResult,
    TaskStatus,
    TaskType,
)

logger = get_logger(__name__)


class BaseSubagent(ABC):
    """
    Stateless worker for one task type.

    ``execute`` never raises: a misrouted task, a deadline expiry or any
    error from ``run`` comes back as a failed ``TaskResult`` whose
    ``error_type`` names the error class.
    """

    task_type: TaskType
    source: str = "medguard"
    failure_follow_up: list[str] = []
    failure_warning: str = "Task failed"
    failure_limitation: str = "Unable to complete task"

    @abstractmethod
    async def run(self, task_input: Any) -> dict[str, Any]:
        """
        Do the work for one task input.

        Returns:
            Dictionary with ``result`` plus optional ``confidence``,
            ``source``, ``decisions``, ``warnings``, ``limitations`` and
            ``follow_up`` entries.
        """
        pass

    async def execute(self, task: Task) -> TaskResult:
        start = time.perf_counter()

        if task.task_type != self.task_type:
            return self._failure(
                task,
                LogicError(f"Invalid task type: {task.task_type.value}"),
                start,
            )
        if task.input.kind != self.task_type.value:
            return self._failure(
                task,
                LogicError(
                    f"Task input '{task.input.kind}' does not match task type "
                    f"{self.task_type.value}"
                ),
                start,
            )

        timeout_ms = task.constraints.timeout_ms
        try:
            output = await asyncio.wait_for(self.run(task.input), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            return self._failure(
                task,
                PipelineTimeoutError(f"Operation timed out after {timeout_ms}ms"),
                start,
            )
        except MedGuardError as e:
            return self._failure(task, e, start)
        except Exception as e:
            logger.exception(
                f"Unexpected error in {type(self).__name__}",
                extra={"task_id": task.task_id}
            )
            return self._failure(task, LogicError(str(e)), start)

        return TaskResult(
            task_id=task.task_id,
            status=TaskStatus.COMPLETE,
            result=output["result"],
            metadata=TaskMetadata(
                processing_time_ms=_elapsed_ms(start),
                confidence=output.get("confidence", 1.0),
                source=output.get("source", self.source),
                decisions_made=output.get("decisions", []),
            ),
            recommendations=TaskRecommendations(
                follow_up=output.get("follow_up", []),
                warnings=output.get("warnings", []),
                limitations=output.get("limitations", []),
            ),
        )

    def _failure(self, task: Task, error: MedGuardError, start: float) -> TaskResult:
        logger.debug(
            f"{type(self).__name__} task failed: {error.message}",
            extra={"task_id": task.task_id, "error_type": error.error_type}
        )
        return TaskResult(
            task_id=task.task_id,
            status=TaskStatus.FAILED,
            error=error.message,
            error_type=error.error_type,
            metadata=TaskMetadata(
                processing_time_ms=_elapsed_ms(start),
                confidence=0.0,
                source=self.source,
            ),
            recommendations=TaskRecommendations(
                follow_up=list(self.failure_follow_up),
                warnings=[self.failure_warning],
                limitations=[self.failure_limitation],
            ),
        )


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)
