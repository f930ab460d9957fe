"""Pydantic models for the REST server."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, JsonValue

from express_workflow.workflow.records import ExecutionRecord, ExecutionStatus


class ExecutionSummary(BaseModel):
    execution_id: str
    workflow_id: str
    status: ExecutionStatus
    start_time: datetime
    end_time: datetime | None = None

    steps_completed: int = 0
    error_type: str | None = None

    @classmethod
    def from_record(cls, record: ExecutionRecord) -> ExecutionSummary:
        return cls(
            execution_id=record.execution_id,
            workflow_id=record.workflow_id,
            status=record.status,
            start_time=record.start_time,
            end_time=record.end_time,
            steps_completed=len(record.step_history),
            error_type=record.error_type,
        )


class StartExecutionRequest(BaseModel):
    input: JsonValue = None
    execution_id: str | None = Field(default=None, min_length=1, max_length=128)


class SendMessageRequest(BaseModel):
    body: JsonValue = Field(
        description="Message body. Strings are sent as-is, anything else as JSON.",
    )


class MessageAccepted(BaseModel):
    message_id: str


class StepDescription(BaseModel):
    name: str
    next: str | None
    output_path: str


class WorkflowDescription(BaseModel):
    workflow_id: str
    entry: str | None
    steps: list[StepDescription] = Field(default_factory=list)
