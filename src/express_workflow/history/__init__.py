"""Durable execution history."""

from express_workflow.history.log import ExecutionLog, JsonlExecutionLog, MemoryExecutionLog

__all__ = ["ExecutionLog", "JsonlExecutionLog", "MemoryExecutionLog"]
