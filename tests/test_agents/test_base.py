"""
Tests for the subagent task protocol.
"""

import asyncio
from typing import Any

import pytest

from medguard.agents.base import BaseSubagent
from medguard.core.exceptions import NotFoundError
from medguard.schemas.tasks import (
    ContextInput,
    NormalizeInput,
    Task,
    TaskStatus,
    TaskType,
)


class EchoSubagent(BaseSubagent):
    """Echoes the drug name, or misbehaves on request."""

    task_type = TaskType.NORMALIZE
    source = "echo"
    failure_warning = "Echo failed"

    async def run(self, task_input: NormalizeInput) -> dict[str, Any]:
        name = task_input.drug_name
        if name == "slow":
            await asyncio.sleep(1)
        if name == "missing":
            raise NotFoundError("Drug not found: missing")
        if name == "crash":
            raise KeyError("unexpected")
        return {
            "result": name.upper(),
            "confidence": 0.8,
            "decisions": ["Echoed input"],
            "warnings": ["Echo only"],
        }


def normalize_task(name: str, timeout_ms: int = 1000) -> Task:
    return Task.create(TaskType.NORMALIZE, "Echo", NormalizeInput(drug_name=name), timeout_ms=timeout_ms)


@pytest.fixture
def agent() -> EchoSubagent:
    return EchoSubagent()


async def test_successful_task(agent: EchoSubagent):
    """Test a subagent's output is wrapped in a completed result."""
    task = normalize_task("warfarin")
    result = await agent.execute(task)

    assert result.ok
    assert result.task_id == task.task_id
    assert result.result == "WARFARIN"
    assert result.error is None
    assert result.metadata.source == "echo"
    assert result.metadata.confidence == pytest.approx(0.8)
    assert result.metadata.decisions_made == ["Echoed input"]
    assert result.recommendations.warnings == ["Echo only"]


async def test_wrong_task_type_is_logic_error(agent: EchoSubagent):
    """Test a task meant for another subagent is refused."""
    task = Task.create(
        TaskType.CONTEXT_RETRIEVAL,
        "Wrong agent",
        ContextInput(patient_id="P001"),
        timeout_ms=1000,
    )
    result = await agent.execute(task)

    assert result.status == TaskStatus.FAILED
    assert result.error_type == "LogicError"
    assert result.error == "Invalid task type: context_retrieval"
    assert result.result is None


async def test_deadline_is_timeout_error(agent: EchoSubagent):
    """Test work past the task deadline becomes a timed-out result."""
    result = await agent.execute(normalize_task("slow", timeout_ms=50))

    assert not result.ok
    assert result.error_type == "TimeoutError"
    assert result.error == "Operation timed out after 50ms"


async def test_domain_error_keeps_its_type(agent: EchoSubagent):
    """Test a domain error keeps its error type in the result."""
    result = await agent.execute(normalize_task("missing"))

    assert result.error_type == "NotFoundError"
    assert result.recommendations.warnings == ["Echo failed"]
    assert result.metadata.confidence == 0.0


async def test_unexpected_error_is_logic_error(agent: EchoSubagent):
    """Test an unexpected exception is contained as a LogicError."""
    result = await agent.execute(normalize_task("crash"))

    assert result.error_type == "LogicError"


def test_task_ids_are_unique_and_prefixed():
    """Test task ids are unique and carry the task type."""
    first = normalize_task("a")
    second = normalize_task("a")

    assert first.task_id != second.task_id
    assert first.task_id.startswith("normalize_")
    assert first.constraints.timeout_ms == 1000
