"""Execution records.

An Execution Record is created when a run starts, grows by one `StepEvent` per
executed step and becomes immutable once its status leaves RUNNING.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, JsonValue

_MESSAGE_NAMESPACE = uuid.UUID("6f1c2d4e-8a3b-5c7d-9e0f-1a2b3c4d5e6f")


class ExecutionStatus(str, Enum):
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING


class StepStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class StepEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_name: str
    input: JsonValue
    output: JsonValue = None
    status: StepStatus
    timestamp: datetime = Field(default_factory=utc_now)
    duration_ms: float = 0.0

    error: str | None = None
    error_type: str | None = None


class ExecutionRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    execution_id: str
    workflow_id: str
    status: ExecutionStatus = ExecutionStatus.RUNNING
    start_time: datetime = Field(default_factory=utc_now)
    end_time: datetime | None = None

    input: JsonValue = None
    output: JsonValue = None
    error: str | None = None
    error_type: str | None = None

    step_history: list[StepEvent] = Field(default_factory=list)

    @property
    def duration_ms(self) -> float | None:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds() * 1000.0


def new_execution_id() -> str:
    return uuid.uuid4().hex


def execution_id_for_message(workflow_id: str, message_id: str) -> str:
    """Stable execution id for a queue message.

    A redelivered message maps to the same id, which lets the execution log
    refuse to start a second run for it.
    """

    return uuid.uuid5(_MESSAGE_NAMESPACE, f"{workflow_id}:{message_id}").hex
