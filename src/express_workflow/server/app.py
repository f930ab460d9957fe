"""FastAPI app factory.

Endpoints are thin wrappers over the engine: the execution log read API,
synchronous runs, and enqueueing trigger messages.

Run with:
    uvicorn express_workflow.server:create_app --factory
"""

from __future__ import annotations

import json
import logging
import threading

from fastapi import FastAPI, HTTPException, Query, status

from express_workflow import __version__
from express_workflow.core.errors import NotFoundError
from express_workflow.engine import Engine
from express_workflow.server.models import (
    ExecutionSummary,
    MessageAccepted,
    SendMessageRequest,
    StartExecutionRequest,
    WorkflowDescription,
)
from express_workflow.triggers.queue import InboundQueue
from express_workflow.workflow.records import ExecutionRecord, ExecutionStatus, StepEvent
from express_workflow.workflow.registry import WorkflowDefinition

logger = logging.getLogger(__name__)


def create_app(
    engine: Engine | None = None,
    *,
    definition: WorkflowDefinition | None = None,
    queue: InboundQueue | None = None,
) -> FastAPI:
    engine = engine or Engine.with_text_pipeline()
    definition = definition or engine.define()

    app = FastAPI(
        title="Express Workflow",
        version=__version__,
        description="REST API over the workflow engine and its execution log.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    # Expose the engine for request handlers that want to read it.
    app.state.engine = engine
    app.state.definition = definition

    queue_lock = threading.Lock()
    queues: list[InboundQueue] = [queue] if queue is not None else []

    def _queue() -> InboundQueue:
        with queue_lock:
            if not queues:
                queues.append(engine.create_queue())
            return queues[0]

    def _get_record(execution_id: str) -> ExecutionRecord:
        try:
            return engine.get_execution(execution_id)
        except NotFoundError:
            raise HTTPException(status_code=404, detail="Execution not found") from None

    @app.get("/api/v1/health")
    def health() -> dict[str, str]:
        return {
            "status": "ok",
            "version": __version__,
            "workflowId": definition.workflow_id,
        }

    @app.get("/api/v1/workflow", response_model=WorkflowDescription)
    def describe_workflow() -> WorkflowDescription:
        return WorkflowDescription.model_validate(definition.describe())

    @app.get("/api/v1/executions", response_model=list[ExecutionSummary])
    def list_executions(
        status_filter: ExecutionStatus | None = Query(default=None, alias="status"),
        limit: int = Query(default=50, ge=1, le=1000),
    ) -> list[ExecutionSummary]:
        records = engine.execution_log.list(status=status_filter, limit=limit)
        return [ExecutionSummary.from_record(r) for r in records]

    @app.get("/api/v1/executions/{execution_id}", response_model=ExecutionRecord)
    def get_execution(execution_id: str) -> ExecutionRecord:
        return _get_record(execution_id)

    @app.get("/api/v1/executions/{execution_id}/history", response_model=list[StepEvent])
    def get_history(execution_id: str) -> list[StepEvent]:
        return list(_get_record(execution_id).step_history)

    @app.post("/api/v1/executions", response_model=ExecutionRecord)
    def start_execution(req: StartExecutionRequest) -> ExecutionRecord:
        # Express-style synchronous run: the response is the terminal record.
        try:
            return engine.run(definition, req.input, execution_id=req.execution_id)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from None

    @app.post(
        "/api/v1/messages",
        response_model=MessageAccepted,
        status_code=status.HTTP_202_ACCEPTED,
    )
    def send_message(req: SendMessageRequest) -> MessageAccepted:
        body = req.body if isinstance(req.body, str) else json.dumps(req.body)
        message_id = _queue().send(body)
        logger.info("Message enqueued", extra={"message_id": message_id})
        return MessageAccepted(message_id=message_id)

    return app
