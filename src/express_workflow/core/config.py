"""Core configuration for the workflow engine.

Configuration is loaded from environment variables and a local `.env` file (if
present). Every section has its own prefix so it can also be constructed on its
own, e.g. in tests.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from express_workflow.core.logging import configure_logging


class ExecutorConfig(BaseSettings):
    """Configuration for the workflow executor."""

    run_timeout_seconds: float | None = Field(
        default=300.0,
        gt=0,
        description="Maximum wall-clock duration of a single run (None = unbounded)",
    )
    task_timeout_seconds: float | None = Field(
        default=20.0,
        gt=0,
        description="Default invocation timeout for task units that do not declare one",
    )

    model_config = SettingsConfigDict(
        env_prefix="EXPRESS_WORKFLOW_EXECUTOR_",
        env_file=".env",
        extra="ignore",
    )


class ExecutionLogConfig(BaseSettings):
    """Configuration for the execution log."""

    backend: Literal["jsonl", "memory"] = Field(
        default="jsonl",
        description="Execution log backend",
    )
    path: Path = Field(
        default=Path("execution_log"),
        description="Directory holding one JSON Lines file per execution",
    )
    fsync: bool = Field(
        default=True,
        description="fsync every append before acknowledging it",
    )

    model_config = SettingsConfigDict(
        env_prefix="EXPRESS_WORKFLOW_HISTORY_",
        env_file=".env",
        extra="ignore",
    )


class QueueConfig(BaseSettings):
    """Configuration for the inbound queue."""

    provider: Literal["memory", "directory", "sqs"] = Field(
        default="directory",
        description="Inbound queue implementation",
    )
    directory: Path = Field(
        default=Path("queue"),
        description="Root of the directory queue (pending/ and processed/ live below it)",
    )
    sqs_queue_url: str | None = Field(
        default=None,
        description="SQS queue URL (required for the sqs provider)",
    )
    wait_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=20.0,
        description="How long a single receive() may block waiting for a message",
    )

    model_config = SettingsConfigDict(
        env_prefix="EXPRESS_WORKFLOW_QUEUE_",
        env_file=".env",
        extra="ignore",
    )


class ListenerConfig(BaseSettings):
    """Configuration for the trigger listener."""

    max_in_flight: int = Field(
        default=8,
        gt=0,
        description="Maximum number of concurrently executing runs",
    )
    poll_interval_seconds: float = Field(
        default=1.0,
        gt=0.0,
        description="Back-off after an empty or failed receive",
    )
    idempotent_execution_ids: bool = Field(
        default=True,
        description="Derive execution ids from message ids so redeliveries do not start new runs",
    )

    model_config = SettingsConfigDict(
        env_prefix="EXPRESS_WORKFLOW_LISTENER_",
        env_file=".env",
        extra="ignore",
    )


class AwsConfig(BaseSettings):
    """Configuration for AWS-backed queues and functions."""

    region: str = Field(
        default="us-east-1",
        description="AWS region",
    )
    endpoint_url: str | None = Field(
        default=None,
        description="Override endpoint (LocalStack, ElasticMQ)",
    )

    model_config = SettingsConfigDict(
        env_prefix="EXPRESS_WORKFLOW_AWS_",
        env_file=".env",
        extra="ignore",
    )


class EngineConfig(BaseSettings):
    """Main configuration for the engine."""

    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    workflow_id: str = Field(
        default="text-processing",
        description="Identifier recorded on every execution of the default workflow",
    )

    executor: ExecutorConfig = Field(
        default_factory=ExecutorConfig,
        description="Executor configuration",
    )
    history: ExecutionLogConfig = Field(
        default_factory=ExecutionLogConfig,
        description="Execution log configuration",
    )
    queue: QueueConfig = Field(
        default_factory=QueueConfig,
        description="Inbound queue configuration",
    )
    listener: ListenerConfig = Field(
        default_factory=ListenerConfig,
        description="Trigger listener configuration",
    )
    aws: AwsConfig = Field(
        default_factory=AwsConfig,
        description="AWS configuration",
    )

    model_config = SettingsConfigDict(
        env_prefix="EXPRESS_WORKFLOW_",
        env_file=".env",
        extra="ignore",
    )

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        configure_logging(self.log_level)

        if self.debug:
            logging.getLogger("express_workflow").setLevel(logging.DEBUG)
