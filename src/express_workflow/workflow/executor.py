"""Workflow executor.

Runs one workflow definition against one input, synchronously from the caller's
point of view, and leaves a terminal Execution Record in the execution log.

Per-run failures (`TaskError`, `PathResolutionError`, `RunTimeoutError`) are
contained in that run's record. Nothing is retried here; retrying is the
concern of the task unit's own invocation.
"""

from __future__ import annotations

import logging
import time

from pydantic import JsonValue

from express_workflow.core.errors import (
    ExecutionFinalizedError,
    PathResolutionError,
    RunTimeoutError,
    TaskError,
    WorkflowError,
)
from express_workflow.history.log import ExecutionLog
from express_workflow.workflow.records import (
    ExecutionRecord,
    ExecutionStatus,
    StepEvent,
    StepStatus,
    new_execution_id,
)
from express_workflow.workflow.registry import WorkflowDefinition
from express_workflow.workflow.task import InvocationTimeout, TaskUnit

logger = logging.getLogger(__name__)


class WorkflowExecutor:
    def __init__(
        self,
        log: ExecutionLog,
        *,
        run_timeout_seconds: float | None = None,
        task_timeout_seconds: float | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            log: Where every run is recorded.
            run_timeout_seconds: Upper bound on a whole run (None = unbounded).
            task_timeout_seconds: Invocation timeout for task units that do not
                declare their own (None = unbounded).
        """
        self.log = log
        self.run_timeout_seconds = run_timeout_seconds
        self.task_timeout_seconds = task_timeout_seconds

    def run(
        self,
        definition: WorkflowDefinition,
        input: JsonValue,
        *,
        execution_id: str | None = None,
    ) -> ExecutionRecord:
        """Start and execute a run.

        If `execution_id` names an execution that already exists, nothing is
        executed and the stored record is returned.
        """
        record, created = self.start(definition, input, execution_id=execution_id)
        if not created:
            logger.info(
                "Execution already exists; not starting it again",
                extra={"execution_id": record.execution_id, "status": record.status.value},
            )
            return record
        return self.execute(definition, record)

    def start(
        self,
        definition: WorkflowDefinition,
        input: JsonValue,
        *,
        execution_id: str | None = None,
    ) -> tuple[ExecutionRecord, bool]:
        """Durably record a run as started, without executing any step."""

        return self.log.start(
            execution_id=execution_id or new_execution_id(),
            workflow_id=definition.workflow_id,
            input=input,
        )

    def reject(
        self,
        definition: WorkflowDefinition,
        error: Exception,
        *,
        execution_id: str | None = None,
    ) -> ExecutionRecord:
        """Record a run whose input could not be read as FAILED, without running a step."""

        record, _ = self.start(definition, None, execution_id=execution_id)
        if record.status.is_terminal:
            return record
        logger.warning(
            "Execution rejected",
            extra={"execution_id": record.execution_id, "error_type": type(error).__name__},
        )
        return self.log.finish(
            record.execution_id,
            ExecutionStatus.FAILED,
            error=str(error),
            error_type=type(error).__name__,
        )

    def execute(self, definition: WorkflowDefinition, record: ExecutionRecord) -> ExecutionRecord:
        """Drive a started run to a terminal status.

        A run that already has step events, because an earlier attempt was cut
        short, continues after its last successful step.

        If the execution log itself cannot be written, the run is marked FAILED
        when possible; otherwise the log error is raised.
        """

        if record.status.is_terminal:
            return record
        try:
            return self._drive(definition, record)
        except ExecutionFinalizedError:
            # Another attempt finished the run first.
            return self.log.get(record.execution_id)
        except Exception as e:
            return self._abandon(record.execution_id, e)

    def _drive(self, definition: WorkflowDefinition, record: ExecutionRecord) -> ExecutionRecord:
        execution_id = record.execution_id
        deadline = (
            time.monotonic() + self.run_timeout_seconds
            if self.run_timeout_seconds is not None
            else None
        )
        logger.info(
            "Execution started",
            extra={
                "execution_id": execution_id,
                "workflow_id": definition.workflow_id,
                "steps": len(definition),
            },
        )

        value = record.input
        step_name: str | None = definition.entry
        if record.step_history:
            last = record.step_history[-1]
            if last.status == StepStatus.FAILED:
                return self.log.finish(
                    execution_id,
                    ExecutionStatus.FAILED,
                    error=last.error,
                    error_type=last.error_type,
                )
            if last.step_name not in definition.steps:
                raise WorkflowError(
                    f"Recorded step {last.step_name!r} is not part of workflow "
                    f"{definition.workflow_id!r}"
                )
            value = last.output
            step_name = definition.steps[last.step_name].next
            logger.info(
                "Resuming execution",
                extra={"execution_id": execution_id, "after_step": last.step_name},
            )

        while step_name is not None:
            step = definition.steps[step_name]
            step_input = value
            started = time.monotonic()
            try:
                value = self._run_step(step.task, step_input, deadline)
            except _StepFailed as failure:
                return self._fail(
                    execution_id,
                    StepEvent(
                        step_name=step_name,
                        input=step_input,
                        output=failure.output,
                        status=StepStatus.FAILED,
                        duration_ms=_elapsed_ms(started),
                        error=str(failure.error),
                        error_type=type(failure.error).__name__,
                    ),
                    failure.error,
                )

            self.log.record(
                execution_id,
                StepEvent(
                    step_name=step_name,
                    input=step_input,
                    output=value,
                    status=StepStatus.SUCCEEDED,
                    duration_ms=_elapsed_ms(started),
                ),
            )
            logger.debug(
                "Step succeeded",
                extra={"execution_id": execution_id, "step": step_name},
            )
            step_name = step.next

        final = self.log.finish(execution_id, ExecutionStatus.SUCCEEDED, output=value)
        logger.info(
            "Execution succeeded",
            extra={"execution_id": execution_id, "duration_ms": final.duration_ms},
        )
        return final

    def _run_step(self, task: TaskUnit, value: JsonValue, deadline: float | None) -> JsonValue:
        task_timeout = (
            task.timeout_seconds if task.timeout_seconds is not None else self.task_timeout_seconds
        )
        timeout = task_timeout
        bounded_by_run = False
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise _StepFailed(RunTimeoutError(self._timeout_message()))
            if timeout is None or remaining < timeout:
                timeout = remaining
                bounded_by_run = True

        result = task.run(value, timeout_seconds=timeout)
        if not result.ok:
            error: WorkflowError = result.error or TaskError(f"Task {task.name!r} failed")
            if bounded_by_run and isinstance(error, InvocationTimeout):
                error = RunTimeoutError(self._timeout_message())
            raise _StepFailed(error)

        try:
            return task.output_path.resolve(result.output)
        except PathResolutionError as e:
            raise _StepFailed(e, output=result.output) from None

    def _fail(self, execution_id: str, event: StepEvent, error: WorkflowError) -> ExecutionRecord:
        self.log.record(execution_id, event)
        final = self.log.finish(
            execution_id,
            ExecutionStatus.FAILED,
            error=str(error),
            error_type=type(error).__name__,
        )
        logger.warning(
            "Execution failed",
            extra={
                "execution_id": execution_id,
                "step": event.step_name,
                "error_type": event.error_type,
                "error": event.error,
            },
        )
        return final

    def _abandon(self, execution_id: str, error: Exception) -> ExecutionRecord:
        logger.exception(
            "Execution could not be recorded; marking it failed",
            extra={"execution_id": execution_id},
        )
        try:
            return self.log.finish(
                execution_id,
                ExecutionStatus.FAILED,
                error=str(error),
                error_type=type(error).__name__,
            )
        except Exception:
            logger.exception(
                "Could not mark execution as failed",
                extra={"execution_id": execution_id},
            )
            raise error from None

    def _timeout_message(self) -> str:
        return f"Execution exceeded its {self.run_timeout_seconds:g}s timeout"


class _StepFailed(Exception):
    def __init__(self, error: WorkflowError, *, output: JsonValue = None) -> None:
        super().__init__(str(error))
        self.error = error
        self.output = output


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000.0, 3)
