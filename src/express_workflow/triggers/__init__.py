"""Queue-driven triggers for workflow executions."""

from express_workflow.triggers.factory import QueueFactory
from express_workflow.triggers.listener import TriggerListener, message_input
from express_workflow.triggers.queue import (
    DirectoryQueue,
    InboundMessage,
    InboundQueue,
    MemoryQueue,
)

__all__ = [
    "DirectoryQueue",
    "InboundMessage",
    "InboundQueue",
    "MemoryQueue",
    "QueueFactory",
    "TriggerListener",
    "message_input",
]
