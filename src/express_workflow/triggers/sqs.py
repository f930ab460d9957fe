"""Amazon SQS inbound queue.

Works with AWS SQS and SQS-compatible services (ElasticMQ, LocalStack) via
`endpoint_url`.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

import boto3
from botocore.exceptions import ClientError

from express_workflow.triggers.queue import InboundMessage, InboundQueue

logger = logging.getLogger(__name__)

# SQS long polling is capped at 20 seconds.
_MAX_WAIT_SECONDS = 20


class SqsQueue(InboundQueue):
    def __init__(
        self,
        queue_url: str,
        *,
        region: str = "us-east-1",
        endpoint_url: str | None = None,
        client: Any | None = None,
    ) -> None:
        self.queue_url = queue_url

        if client is None:
            client_kwargs: dict[str, Any] = {"service_name": "sqs", "region_name": region}
            if endpoint_url:
                client_kwargs["endpoint_url"] = endpoint_url
            client = boto3.client(**client_kwargs)
        self.client = client

        # SQS deletes by receipt handle, the listener acknowledges by message id.
        self._receipts: dict[str, str] = {}
        self._lock = threading.Lock()

        logger.info("SQS queue initialized", extra={"queue_url": queue_url, "region": region})

    def receive(self, timeout_seconds: float | None = None) -> InboundMessage | None:
        wait = min(int(timeout_seconds or 0), _MAX_WAIT_SECONDS)
        response = self.client.receive_message(
            QueueUrl=self.queue_url,
            MaxNumberOfMessages=1,
            WaitTimeSeconds=wait,
            MessageAttributeNames=["All"],
        )
        messages = response.get("Messages", [])
        if not messages:
            return None

        raw = messages[0]
        message_id = raw["MessageId"]
        with self._lock:
            self._receipts[message_id] = raw["ReceiptHandle"]

        attributes = {
            name: value.get("StringValue", "")
            for name, value in raw.get("MessageAttributes", {}).items()
        }
        return InboundMessage(message_id=message_id, body=raw.get("Body", ""), attributes=attributes)

    def acknowledge(self, message_id: str) -> None:
        with self._lock:
            receipt = self._receipts.pop(message_id, None)
        if receipt is None:
            raise KeyError(message_id)
        try:
            self.client.delete_message(QueueUrl=self.queue_url, ReceiptHandle=receipt)
        except ClientError:
            with self._lock:
                self._receipts[message_id] = receipt
            raise

    def send(self, body: str) -> str:
        response = self.client.send_message(QueueUrl=self.queue_url, MessageBody=body)
        return str(response["MessageId"])

    def close(self) -> None:
        close = getattr(self.client, "close", None)
        if callable(close):
            close()
