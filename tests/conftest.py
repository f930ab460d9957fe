"""Test configuration and fixtures."""

from pathlib import Path

import pytest

from express_workflow.core.config import (
    EngineConfig,
    ExecutionLogConfig,
    ExecutorConfig,
    ListenerConfig,
    QueueConfig,
)
from express_workflow.engine import Engine
from express_workflow.functions.text import register_text_functions
from express_workflow.history.log import JsonlExecutionLog, MemoryExecutionLog
from express_workflow.workflow.executor import WorkflowExecutor
from express_workflow.workflow.registry import StepRegistry


@pytest.fixture
def memory_log() -> MemoryExecutionLog:
    """Provide a process-local execution log."""
    return MemoryExecutionLog()


@pytest.fixture
def jsonl_log(tmp_path: Path) -> JsonlExecutionLog:
    """Provide a file-backed execution log in a temporary directory."""
    return JsonlExecutionLog(tmp_path / "execution_log")


@pytest.fixture
def registry() -> StepRegistry:
    """Provide an empty step registry."""
    return StepRegistry()


@pytest.fixture
def text_registry() -> StepRegistry:
    """Provide a registry with the built-in text functions."""
    registry = StepRegistry()
    register_text_functions(registry)
    return registry


@pytest.fixture
def executor(memory_log: MemoryExecutionLog) -> WorkflowExecutor:
    """Provide an executor without timeouts."""
    return WorkflowExecutor(memory_log)


@pytest.fixture
def engine_config(tmp_path: Path) -> EngineConfig:
    """Provide a test engine configuration rooted in a temporary directory."""
    return EngineConfig(
        log_level="DEBUG",
        debug=True,
        workflow_id="test-workflow",
        executor=ExecutorConfig(run_timeout_seconds=30.0, task_timeout_seconds=10.0),
        history=ExecutionLogConfig(backend="jsonl", path=tmp_path / "execution_log", fsync=False),
        queue=QueueConfig(provider="directory", directory=tmp_path / "queue", wait_seconds=0.05),
        listener=ListenerConfig(max_in_flight=4, poll_interval_seconds=0.05),
    )


@pytest.fixture
def engine(engine_config: EngineConfig) -> Engine:
    """Provide an engine with the text pipeline registered."""
    return Engine.with_text_pipeline(engine_config)
