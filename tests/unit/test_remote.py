"""Unit tests for Lambda-backed task units."""

import io
import json
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from express_workflow.core.errors import TaskError
from express_workflow.functions.remote import LambdaInvoker, lambda_task
from express_workflow.workflow.executor import WorkflowExecutor
from express_workflow.workflow.records import ExecutionStatus
from express_workflow.workflow.registry import StepRegistry


def _response(payload: object, **extra: object) -> dict[str, object]:
    return {
        "StatusCode": 200,
        "ExecutedVersion": "$LATEST",
        "Payload": io.BytesIO(json.dumps(payload).encode("utf-8")),
        **extra,
    }


def test_invoke_wraps_payload() -> None:
    client = Mock()
    client.invoke.return_value = _response({"statusCode": 200, "output": "Hi"})

    result = LambdaInvoker("decode-fn", client=client)({"input": "SGk="})

    assert result == {
        "StatusCode": 200,
        "ExecutedVersion": "$LATEST",
        "Payload": {"statusCode": 200, "output": "Hi"},
    }
    client.invoke.assert_called_once_with(
        FunctionName="decode-fn",
        InvocationType="RequestResponse",
        Payload=b'{"input": "SGk="}',
    )


def test_function_error_becomes_task_error() -> None:
    client = Mock()
    client.invoke.return_value = _response(
        {"errorMessage": "bad padding", "errorType": "Error"}, FunctionError="Unhandled"
    )

    with pytest.raises(TaskError, match="bad padding"):
        LambdaInvoker("decode-fn", client=client)("x")


def test_client_error_becomes_task_error() -> None:
    client = Mock()
    client.invoke.side_effect = ClientError(
        {"Error": {"Code": "ResourceNotFoundException", "Message": "no such function"}}, "Invoke"
    )

    with pytest.raises(TaskError) as exc:
        LambdaInvoker("missing-fn", client=client)("x")
    assert exc.value.details == {"function_name": "missing-fn"}


def test_non_json_payload_becomes_task_error() -> None:
    client = Mock()
    client.invoke.return_value = {"StatusCode": 200, "Payload": io.BytesIO(b"<html>")}

    with pytest.raises(TaskError):
        LambdaInvoker("decode-fn", client=client)("x")


def test_lambda_task_projects_payload_by_default(
    registry: StepRegistry, executor: WorkflowExecutor
) -> None:
    client = Mock()
    client.invoke.side_effect = lambda **kwargs: _response(
        {"output": json.loads(kwargs["Payload"])["input"].upper()}
    )
    registry.add(lambda_task("shout", "shout-fn", client=client))
    registry.register("unwrap", lambda v: v["output"])

    record = executor.run(registry.build_definition(["shout", "unwrap"]), {"input": "hi"})

    assert record.status == ExecutionStatus.SUCCEEDED
    assert record.step_history[0].output == {"output": "HI"}
    assert record.output == "HI"
    assert str(registry.get("shout").output_path) == "$.Payload"
