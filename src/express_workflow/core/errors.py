"""Error taxonomy for the workflow engine.

Registry-time errors (`RegistryError` subclasses) are fatal to building a
definition and surface immediately to the operator.

Run-time errors (`TaskError`, `PathResolutionError`, `RunTimeoutError`) are
contained in the Execution Record of the run that raised them. They never escape
the executor.
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for every error raised by the engine."""


class RegistryError(WorkflowError):
    pass


class DuplicateNameError(RegistryError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Task unit already registered: {name!r}")
        self.name = name


class UnknownStepError(RegistryError):
    def __init__(self, name: str, available: list[str] | None = None) -> None:
        message = f"Unknown step: {name!r}"
        if available is not None:
            message += f" (registered: {sorted(available)})"
        super().__init__(message)
        self.name = name


class CycleError(RegistryError):
    def __init__(self, path: list[str]) -> None:
        super().__init__("Workflow contains a cycle: " + " -> ".join(path))
        self.path = path


class InvalidDefinitionError(RegistryError):
    """The step graph does not have exactly one entry node."""


class TaskError(WorkflowError):
    """A Task Unit's own failure (bad input, downstream unavailable, ...)."""

    def __init__(self, message: str, *, details: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class PathResolutionError(WorkflowError):
    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Cannot resolve output path {path!r}: {reason}")
        self.path = path


class RunTimeoutError(WorkflowError, TimeoutError):
    """The run outlived its configured timeout."""


class NotFoundError(WorkflowError, KeyError):
    def __init__(self, execution_id: str) -> None:
        super().__init__(f"Execution not found: {execution_id}")
        self.execution_id = execution_id

    def __str__(self) -> str:
        # KeyError quotes its argument by default.
        return str(self.args[0])


class ExecutionFinalizedError(WorkflowError):
    """Raised when appending to an execution that is no longer RUNNING."""
