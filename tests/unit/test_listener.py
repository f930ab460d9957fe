"""Unit tests for the trigger listener."""

from __future__ import annotations

import json
import threading
import time
from pathlib import Path

import pytest

from express_workflow.history.log import JsonlExecutionLog, MemoryExecutionLog
from express_workflow.triggers.listener import TriggerListener, message_input
from express_workflow.triggers.queue import InboundMessage, InboundQueue, MemoryQueue
from express_workflow.workflow.executor import WorkflowExecutor
from express_workflow.workflow.records import ExecutionStatus, execution_id_for_message
from express_workflow.workflow.registry import StepRegistry, WorkflowDefinition


@pytest.fixture
def queue() -> MemoryQueue:
    return MemoryQueue()


@pytest.fixture
def definition(text_registry: StepRegistry) -> WorkflowDefinition:
    return text_registry.build_definition(["decode", "stats", "clean", "count"], workflow_id="text")


def _listener(queue, executor, definition, **kwargs) -> TriggerListener:
    kwargs.setdefault("receive_wait_seconds", 0.01)
    kwargs.setdefault("poll_interval_seconds", 0.01)
    return TriggerListener(queue=queue, executor=executor, definition=definition, **kwargs)


@pytest.mark.parametrize(
    ("body", "expected"),
    [
        ('{"input": "SGk="}', {"input": "SGk="}),
        (b'[1, 2]', [1, 2]),
        ("plain text", "plain text"),
        ("", ""),
    ],
)
def test_message_input(body: str | bytes, expected: object) -> None:
    assert message_input(InboundMessage(message_id="m", body=body)) == expected


def test_message_runs_workflow_end_to_end(
    queue: MemoryQueue, memory_log: MemoryExecutionLog, definition: WorkflowDefinition
) -> None:
    executor = WorkflowExecutor(memory_log)
    message_id = queue.send(json.dumps({"input": "SGVsbG8sIFdvcmxkIQ=="}))

    with _listener(queue, executor, definition) as listener:
        assert listener.running
        for _ in range(200):
            if memory_log.list(status=ExecutionStatus.SUCCEEDED):
                break
            time.sleep(0.01)
        assert listener.wait_idle(timeout=5)

    assert not listener.running
    [record] = memory_log.list()
    assert record.execution_id == execution_id_for_message("text", message_id)
    assert record.status == ExecutionStatus.SUCCEEDED
    assert record.output == {"wordCount": 2}
    assert queue.pending_count == 0
    assert queue.unacknowledged_count == 0


class ScriptedQueue(InboundQueue):
    """Delivers a fixed list of messages, repeats included."""

    def __init__(self, *messages: InboundMessage) -> None:
        self.messages = list(messages)
        self.acknowledged: list[str] = []

    def receive(self, timeout_seconds: float | None = None) -> InboundMessage | None:
        return self.messages.pop(0) if self.messages else None

    def acknowledge(self, message_id: str) -> None:
        self.acknowledged.append(message_id)

    def send(self, body: str) -> str:
        raise NotImplementedError


def test_redelivered_message_does_not_start_second_run(
    memory_log: MemoryExecutionLog, definition: WorkflowDefinition
) -> None:
    message = InboundMessage(message_id="dup-1", body='{"input": "SGk="}')
    queue = ScriptedQueue(message, message)
    listener = _listener(queue, WorkflowExecutor(memory_log), definition)

    assert listener.poll_once() is True
    assert listener.wait_idle(timeout=5)
    assert listener.poll_once() is True
    assert listener.wait_idle(timeout=5)
    listener.stop()

    assert len(memory_log.list()) == 1
    assert queue.acknowledged == ["dup-1", "dup-1"]


def test_random_ids_when_idempotency_disabled(
    memory_log: MemoryExecutionLog, definition: WorkflowDefinition
) -> None:
    message = InboundMessage(message_id="dup-1", body='{"input": "SGk="}')
    queue = ScriptedQueue(message, message)
    listener = _listener(
        queue, WorkflowExecutor(memory_log), definition, idempotent_execution_ids=False
    )

    listener.poll_once()
    listener.poll_once()
    assert listener.wait_idle(timeout=5)
    listener.stop()

    assert len(memory_log.list()) == 2


def test_start_failure_leaves_message_unacknowledged(
    queue: MemoryQueue, definition: WorkflowDefinition
) -> None:
    class BrokenLog(MemoryExecutionLog):
        def start(self, **kwargs):
            raise OSError("disk full")

    listener = _listener(queue, WorkflowExecutor(BrokenLog()), definition)
    queue.send('{"input": "SGk="}')

    assert listener.poll_once() is True
    listener.stop()

    assert queue.unacknowledged_count == 1
    assert listener.in_flight == 0
    assert queue.requeue_unacknowledged() == 1


def test_max_in_flight_pushes_back_on_queue(
    registry: StepRegistry, queue: MemoryQueue, memory_log: MemoryExecutionLog
) -> None:
    release = threading.Event()
    registry.register("block", lambda v: release.wait(5) and v)
    definition = registry.build_definition(["block"])
    listener = _listener(queue, WorkflowExecutor(memory_log), definition, max_in_flight=1)
    queue.send("1")
    queue.send("2")

    try:
        assert listener.poll_once() is True
        assert listener.in_flight == 1
        assert listener.poll_once() is False
        assert queue.pending_count == 1
    finally:
        release.set()

    assert listener.wait_idle(timeout=5)
    assert listener.poll_once() is True
    assert listener.wait_idle(timeout=5)
    listener.stop()

    statuses = [r.status for r in memory_log.list()]
    assert statuses == [ExecutionStatus.SUCCEEDED, ExecutionStatus.SUCCEEDED]


def test_failed_runs_are_contained(
    queue: MemoryQueue, memory_log: MemoryExecutionLog, definition: WorkflowDefinition
) -> None:
    listener = _listener(queue, WorkflowExecutor(memory_log), definition, max_in_flight=1)
    queue.send('{"input": "not base64!"}')
    queue.send('{"input": "SGk="}')

    for _ in range(2):
        assert listener.poll_once() is True
        assert listener.wait_idle(timeout=5)
    listener.stop()

    statuses = sorted(r.status.value for r in memory_log.list())
    assert statuses == ["FAILED", "SUCCEEDED"]


def test_executor_crash_releases_slot(
    queue: MemoryQueue, memory_log: MemoryExecutionLog, definition: WorkflowDefinition
) -> None:
    class CrashingExecutor(WorkflowExecutor):
        def execute(self, definition, record):
            raise RuntimeError("unexpected")

    listener = _listener(queue, CrashingExecutor(memory_log), definition, max_in_flight=1)
    queue.send("a")
    queue.send("b")

    assert listener.poll_once() is True
    assert listener.wait_idle(timeout=5)
    assert listener.poll_once() is True
    assert listener.wait_idle(timeout=5)
    listener.stop()

    assert queue.unacknowledged_count == 0
    assert len(memory_log.list(status=ExecutionStatus.RUNNING)) == 2


def test_rejects_non_positive_max_in_flight(
    queue: MemoryQueue, executor: WorkflowExecutor, definition: WorkflowDefinition
) -> None:
    with pytest.raises(ValueError):
        _listener(queue, executor, definition, max_in_flight=0)


def test_run_started_before_a_crash_completes_on_redelivery(
    tmp_path: Path, queue: MemoryQueue, definition: WorkflowDefinition
) -> None:
    queue.send(json.dumps({"input": "SGVsbG8sIFdvcmxkIQ=="}))

    # A listener records the start, then dies before acknowledging.
    message = queue.receive()
    assert message is not None
    execution_id = execution_id_for_message("text", message.message_id)
    WorkflowExecutor(JsonlExecutionLog(tmp_path, fsync=False)).start(
        definition, message_input(message), execution_id=execution_id
    )
    assert queue.requeue_unacknowledged() == 1

    log = JsonlExecutionLog(tmp_path, fsync=False)
    listener = _listener(queue, WorkflowExecutor(log), definition)
    assert listener.poll_once() is True
    assert listener.wait_idle(timeout=5)
    listener.stop()

    record = log.get(execution_id)
    assert record.status == ExecutionStatus.SUCCEEDED
    assert record.output == {"wordCount": 2}
    assert len(log.list()) == 1
    assert queue.pending_count == 0
    assert queue.unacknowledged_count == 0


def test_redelivery_during_a_run_does_not_execute_it_twice(
    registry: StepRegistry, memory_log: MemoryExecutionLog
) -> None:
    release = threading.Event()
    calls: list[object] = []

    def block(value):
        calls.append(value)
        release.wait(5)
        return value

    registry.register("block", block)
    definition = registry.build_definition(["block"])
    message = InboundMessage(message_id="slow-1", body="1")
    queue = ScriptedQueue(message, message)
    listener = _listener(queue, WorkflowExecutor(memory_log), definition, max_in_flight=2)

    try:
        assert listener.poll_once() is True
        assert listener.poll_once() is True
        assert listener.in_flight == 1
    finally:
        release.set()
    assert listener.wait_idle(timeout=5)
    listener.stop()

    assert calls == [1]
    assert queue.acknowledged == ["slow-1", "slow-1"]
    [record] = memory_log.list()
    assert record.status == ExecutionStatus.SUCCEEDED


def test_undecodable_body_is_recorded_as_failed_run(
    memory_log: MemoryExecutionLog, definition: WorkflowDefinition
) -> None:
    queue = ScriptedQueue(InboundMessage(message_id="bin-1", body=b"\xff\xfe"))
    listener = _listener(queue, WorkflowExecutor(memory_log), definition)

    assert listener.poll_once() is True
    listener.stop()

    [record] = memory_log.list()
    assert record.status == ExecutionStatus.FAILED
    assert record.error_type == "UnicodeDecodeError"
    assert record.step_history == []
    assert queue.acknowledged == ["bin-1"]
    assert listener.in_flight == 0


def test_message_input_rejects_non_utf8_bytes() -> None:
    with pytest.raises(UnicodeDecodeError):
        message_input(InboundMessage(message_id="m", body=b"\xff"))
