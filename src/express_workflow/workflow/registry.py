"""Step registry and workflow definitions."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType

from express_workflow.core.errors import (
    CycleError,
    DuplicateNameError,
    InvalidDefinitionError,
    UnknownStepError,
)
from express_workflow.workflow.paths import OutputPath
from express_workflow.workflow.task import TaskFunction, TaskUnit

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class WorkflowStep:
    """A node in a workflow definition."""

    name: str
    task: TaskUnit
    next: str | None = None


@dataclass(frozen=True, slots=True)
class WorkflowDefinition:
    """Immutable graph of task units.

    Each step has at most one successor ("next step on success"). The graph is
    acyclic and has exactly one entry node, except for the empty workflow which
    has none.
    """

    workflow_id: str
    steps: Mapping[str, WorkflowStep]
    entry: str | None

    def __len__(self) -> int:
        return len(self.steps)

    def path(self) -> list[str]:
        """Step names in execution order."""

        names: list[str] = []
        current = self.entry
        while current is not None:
            names.append(current)
            current = self.steps[current].next
        return names

    def describe(self) -> dict[str, object]:
        return {
            "workflow_id": self.workflow_id,
            "entry": self.entry,
            "steps": [
                {
                    "name": name,
                    "next": self.steps[name].next,
                    "output_path": str(self.steps[name].task.output_path),
                }
                for name in self.path()
            ],
        }


class StepRegistry:
    """Holds task units by name and builds workflow definitions from them.

    Registration is all-or-nothing: a rejected registration leaves the registry
    exactly as it was.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, TaskUnit] = {}
        self._lock = threading.Lock()

    def register(
        self,
        name: str,
        fn: TaskFunction,
        *,
        output_path: str | OutputPath = "$",
        timeout_seconds: float | None = None,
        description: str = "",
    ) -> TaskUnit:
        path = output_path if isinstance(output_path, OutputPath) else OutputPath.parse(output_path)
        task = TaskUnit(
            name=name,
            invoke=fn,
            output_path=path,
            timeout_seconds=timeout_seconds,
            description=description,
        )
        return self.add(task)

    def add(self, task: TaskUnit) -> TaskUnit:
        with self._lock:
            if task.name in self._tasks:
                raise DuplicateNameError(task.name)
            self._tasks[task.name] = task
        logger.debug(
            "Task unit registered",
            extra={"step": task.name, "output_path": str(task.output_path)},
        )
        return task

    def task(
        self,
        name: str,
        *,
        output_path: str | OutputPath = "$",
        timeout_seconds: float | None = None,
    ) -> Callable[[TaskFunction], TaskFunction]:
        """Decorator form of :meth:`register`.

        Usage:
            @registry.task("decode", output_path="$.output")
            def decode(value): ...
        """

        def decorator(fn: TaskFunction) -> TaskFunction:
            doc_lines = (fn.__doc__ or "").strip().splitlines()
            self.register(
                name,
                fn,
                output_path=output_path,
                timeout_seconds=timeout_seconds,
                description=doc_lines[0] if doc_lines else "",
            )
            return fn

        return decorator

    def get(self, name: str) -> TaskUnit:
        with self._lock:
            task = self._tasks.get(name)
            if task is None:
                raise UnknownStepError(name, list(self._tasks))
            return task

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._tasks)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._tasks

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def __iter__(self) -> Iterator[TaskUnit]:
        with self._lock:
            tasks = list(self._tasks.values())
        return iter(tasks)

    def build_definition(
        self, ordered_names: Sequence[str], *, workflow_id: str = "default"
    ) -> WorkflowDefinition:
        """Build a linear chain: ordered_names[0] -> ordered_names[1] -> ...

        A name appearing twice would make the chain revisit a node, so it is
        rejected as a cycle.
        """

        names = list(ordered_names)
        tasks = self._snapshot(names)

        seen: dict[str, int] = {}
        for index, name in enumerate(names):
            if name in seen:
                raise CycleError(names[seen[name] : index + 1])
            seen[name] = index

        steps = {
            name: WorkflowStep(
                name=name,
                task=tasks[name],
                next=names[i + 1] if i + 1 < len(names) else None,
            )
            for i, name in enumerate(names)
        }
        return WorkflowDefinition(
            workflow_id=workflow_id,
            steps=MappingProxyType(steps),
            entry=names[0] if names else None,
        )

    def build_graph(
        self, edges: Mapping[str, str | None], *, workflow_id: str = "default"
    ) -> WorkflowDefinition:
        """Build a definition from `name -> successor` edges (None = terminal)."""

        referenced = list(edges) + [t for t in edges.values() if t is not None]
        tasks = self._snapshot(referenced)
        successors: dict[str, str | None] = {name: edges.get(name) for name in referenced}

        _check_acyclic(successors)

        targets = {t for t in successors.values() if t is not None}
        entries = [name for name in successors if name not in targets]
        if successors and len(entries) != 1:
            raise InvalidDefinitionError(
                f"Workflow must have exactly one entry step, found {sorted(entries)}"
            )

        steps = {
            name: WorkflowStep(name=name, task=tasks[name], next=successor)
            for name, successor in successors.items()
        }
        return WorkflowDefinition(
            workflow_id=workflow_id,
            steps=MappingProxyType(steps),
            entry=entries[0] if entries else None,
        )

    def _snapshot(self, names: Sequence[str]) -> dict[str, TaskUnit]:
        with self._lock:
            for name in names:
                if name not in self._tasks:
                    raise UnknownStepError(name, list(self._tasks))
            return {name: self._tasks[name] for name in names}


def _check_acyclic(successors: Mapping[str, str | None]) -> None:
    WHITE, GRAY, BLACK = 0, 1, 2
    color = {name: WHITE for name in successors}

    for start in successors:
        if color[start] != WHITE:
            continue
        trail: list[str] = []
        node: str | None = start
        while node is not None and color[node] == WHITE:
            color[node] = GRAY
            trail.append(node)
            node = successors[node]
        if node is not None and color[node] == GRAY:
            raise CycleError(trail[trail.index(node) :] + [node])
        for visited in trail:
            color[visited] = BLACK
