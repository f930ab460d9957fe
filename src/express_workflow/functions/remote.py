"""Task units backed by AWS Lambda functions.

The invocation result mirrors what a state machine's Lambda task sees:

    {"StatusCode": 200, "ExecutedVersion": "$LATEST", "Payload": <function result>}

which is why remote task units project `$.Payload` by default.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import JsonValue

from express_workflow.core.errors import TaskError
from express_workflow.workflow.paths import OutputPath
from express_workflow.workflow.task import TaskUnit

logger = logging.getLogger(__name__)


class LambdaInvoker:
    """Synchronously invoke one Lambda function with a JSON payload."""

    def __init__(
        self,
        function_name: str,
        *,
        region: str = "us-east-1",
        endpoint_url: str | None = None,
        client: Any | None = None,
    ) -> None:
        self.function_name = function_name

        if client is None:
            client_kwargs: dict[str, Any] = {"service_name": "lambda", "region_name": region}
            if endpoint_url:
                client_kwargs["endpoint_url"] = endpoint_url
            client = boto3.client(**client_kwargs)
        self.client = client

    def __call__(self, value: JsonValue) -> JsonValue:
        try:
            response = self.client.invoke(
                FunctionName=self.function_name,
                InvocationType="RequestResponse",
                Payload=json.dumps(value).encode("utf-8"),
            )
        except (ClientError, BotoCoreError) as e:
            raise TaskError(
                f"Invoking {self.function_name} failed: {e}",
                details={"function_name": self.function_name},
            ) from e

        raw = response["Payload"].read() if "Payload" in response else b""
        try:
            payload: JsonValue = json.loads(raw) if raw else None
        except json.JSONDecodeError as e:
            raise TaskError(f"{self.function_name} returned a non-JSON payload") from e

        if "FunctionError" in response:
            message = payload.get("errorMessage") if isinstance(payload, dict) else None
            raise TaskError(
                f"{self.function_name} raised {response['FunctionError']}: {message or payload}",
                details={"function_name": self.function_name, "payload": payload},
            )

        logger.debug(
            "Lambda invoked",
            extra={"function_name": self.function_name, "status_code": response.get("StatusCode")},
        )
        return {
            "StatusCode": response.get("StatusCode"),
            "ExecutedVersion": response.get("ExecutedVersion"),
            "Payload": payload,
        }


def lambda_task(
    name: str,
    function_name: str,
    *,
    output_path: str = "$.Payload",
    timeout_seconds: float | None = None,
    region: str = "us-east-1",
    endpoint_url: str | None = None,
    client: Any | None = None,
) -> TaskUnit:
    """Build a task unit that invokes `function_name`; register it with `StepRegistry.add`."""

    invoker = LambdaInvoker(function_name, region=region, endpoint_url=endpoint_url, client=client)
    return TaskUnit(
        name=name,
        invoke=invoker,
        output_path=OutputPath.parse(output_path),
        timeout_seconds=timeout_seconds,
        description=f"AWS Lambda {function_name}",
    )
