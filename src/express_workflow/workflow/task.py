from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field

from pydantic import JsonValue, TypeAdapter, ValidationError

from express_workflow.core.errors import TaskError
from express_workflow.workflow.paths import ROOT, OutputPath

TaskFunction = Callable[[JsonValue], JsonValue]

_JSON = TypeAdapter(JsonValue)


@dataclass(frozen=True, slots=True)
class TaskResult:
    ok: bool
    output: JsonValue = None
    error: TaskError | None = None


@dataclass(frozen=True, slots=True)
class TaskUnit:
    """A named, independently invocable processing step.

    `invoke` receives a JSON-compatible value and returns one. It signals its own
    failure by raising `TaskError`; any other exception is treated the same way.

    `output_path` selects the part of the result passed on to the next step.
    """

    name: str
    invoke: TaskFunction = field(compare=False)
    output_path: OutputPath = ROOT
    timeout_seconds: float | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Task unit name must be a non-empty string")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

    def run(self, value: JsonValue, *, timeout_seconds: float | None = None) -> TaskResult:
        """Invoke the task, containing every failure in the returned result.

        When a timeout is given the invocation runs on a daemon thread and is
        abandoned if it does not finish in time.
        """

        try:
            if timeout_seconds is None:
                output = self.invoke(value)
            else:
                output = _call_with_timeout(self.invoke, value, timeout_seconds, name=self.name)
            return TaskResult(ok=True, output=_JSON.validate_python(output))
        except TaskError as e:
            return TaskResult(ok=False, error=e)
        except ValidationError as e:
            return TaskResult(
                ok=False,
                error=TaskError(
                    f"Task {self.name!r} returned a value that is not JSON-compatible",
                    details={"errors": e.error_count()},
                ),
            )
        except Exception as e:
            return TaskResult(
                ok=False,
                error=TaskError(f"{type(e).__name__}: {e}", details={"exception": type(e).__name__}),
            )


class InvocationTimeout(TaskError):
    def __init__(self, name: str, timeout_seconds: float) -> None:
        super().__init__(
            f"Task {name!r} did not complete within {timeout_seconds:g}s",
            details={"timeout_seconds": timeout_seconds},
        )
        self.timeout_seconds = timeout_seconds


def _call_with_timeout(
    fn: TaskFunction, value: JsonValue, timeout_seconds: float, *, name: str
) -> JsonValue:
    future: Future[JsonValue] = Future()

    def _target() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn(value))
        except BaseException as e:  # noqa: BLE001 (handed back to the waiting caller)
            future.set_exception(e)

    thread = threading.Thread(target=_target, name=f"task-{name}", daemon=True)
    thread.start()
    try:
        return future.result(timeout=timeout_seconds)
    except FutureTimeout:
        raise InvocationTimeout(name, timeout_seconds) from None
