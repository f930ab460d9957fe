"""Process-wide engine."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from pydantic import JsonValue

from express_workflow.core.config import EngineConfig
from express_workflow.functions.text import TEXT_PIPELINE, register_text_functions
from express_workflow.history.log import ExecutionLog, JsonlExecutionLog, MemoryExecutionLog
from express_workflow.triggers.factory import QueueFactory
from express_workflow.triggers.listener import TriggerListener
from express_workflow.triggers.queue import InboundQueue
from express_workflow.workflow.executor import WorkflowExecutor
from express_workflow.workflow.records import ExecutionRecord, StepEvent
from express_workflow.workflow.registry import StepRegistry, WorkflowDefinition

logger = logging.getLogger(__name__)


class Engine:
    """Holds everything a process needs to run workflows.

    Constructed once at startup and passed explicitly to the trigger listener,
    the CLI and the HTTP API. Runs share nothing but the execution log.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        registry: StepRegistry | None = None,
        execution_log: ExecutionLog | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Configuration object. If None, loads from environment.
            registry: Pre-populated registry. If None, an empty one is created.
            execution_log: Log to record runs in. If None, built from config.
        """
        self.config = config or EngineConfig()
        self.registry = registry if registry is not None else StepRegistry()
        self.execution_log = (
            execution_log if execution_log is not None else _build_log(self.config)
        )
        self.executor = WorkflowExecutor(
            self.execution_log,
            run_timeout_seconds=self.config.executor.run_timeout_seconds,
            task_timeout_seconds=self.config.executor.task_timeout_seconds,
        )
        logger.debug(
            "Engine initialized",
            extra={"history_backend": self.config.history.backend},
        )

    @classmethod
    def with_text_pipeline(
        cls,
        config: EngineConfig | None = None,
        *,
        execution_log: ExecutionLog | None = None,
    ) -> Engine:
        """An engine with the built-in text functions registered."""

        engine = cls(config, execution_log=execution_log)
        register_text_functions(engine.registry)
        return engine

    def define(
        self, ordered_names: Sequence[str] | None = None, *, workflow_id: str | None = None
    ) -> WorkflowDefinition:
        """Build a linear workflow (the text pipeline when no names are given)."""

        names = TEXT_PIPELINE if ordered_names is None else ordered_names
        return self.registry.build_definition(
            names, workflow_id=workflow_id or self.config.workflow_id
        )

    def run(
        self,
        definition: WorkflowDefinition,
        input: JsonValue,
        *,
        execution_id: str | None = None,
    ) -> ExecutionRecord:
        return self.executor.run(definition, input, execution_id=execution_id)

    def get_execution(self, execution_id: str) -> ExecutionRecord:
        return self.execution_log.get(execution_id)

    def get_history(self, execution_id: str) -> list[StepEvent]:
        return self.execution_log.get_history(execution_id)

    def create_queue(self) -> InboundQueue:
        return QueueFactory.create(self.config.queue, self.config.aws)

    def listener(
        self, definition: WorkflowDefinition, queue: InboundQueue | None = None
    ) -> TriggerListener:
        listener_config = self.config.listener
        return TriggerListener(
            queue=queue if queue is not None else self.create_queue(),
            executor=self.executor,
            definition=definition,
            max_in_flight=listener_config.max_in_flight,
            receive_wait_seconds=self.config.queue.wait_seconds,
            poll_interval_seconds=listener_config.poll_interval_seconds,
            idempotent_execution_ids=listener_config.idempotent_execution_ids,
        )


def _build_log(config: EngineConfig) -> ExecutionLog:
    if config.history.backend == "memory":
        return MemoryExecutionLog()
    return JsonlExecutionLog(config.history.path, fsync=config.history.fsync)
