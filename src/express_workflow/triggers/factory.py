"""Factory for creating inbound queues."""

import logging

from express_workflow.core.config import AwsConfig, QueueConfig
from express_workflow.triggers.queue import DirectoryQueue, InboundQueue, MemoryQueue
from express_workflow.triggers.sqs import SqsQueue

logger = logging.getLogger(__name__)


class QueueFactory:
    """Factory for creating inbound queue instances."""

    @staticmethod
    def create(config: QueueConfig, aws: AwsConfig | None = None) -> InboundQueue:
        """Create an inbound queue based on configuration.

        Args:
            config: Queue configuration specifying the provider.
            aws: AWS settings, used by the sqs provider.

        Returns:
            Configured queue instance.

        Raises:
            ValueError: If the provider is not supported or misconfigured.
        """
        logger.info(f"Creating inbound queue: {config.provider}")

        if config.provider == "memory":
            return MemoryQueue()
        elif config.provider == "directory":
            return DirectoryQueue(config.directory)
        elif config.provider == "sqs":
            if not config.sqs_queue_url:
                raise ValueError("EXPRESS_WORKFLOW_QUEUE_SQS_QUEUE_URL is required for sqs")
            aws = aws or AwsConfig()
            return SqsQueue(config.sqs_queue_url, region=aws.region, endpoint_url=aws.endpoint_url)
        else:
            raise ValueError(f"Unsupported queue provider: {config.provider}")
