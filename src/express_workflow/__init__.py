"""Express Workflow.

A small workflow engine:
- task units registered by name and chained into workflow definitions
- a synchronous executor with output path projection between steps
- a durable, append-only execution log
- a queue-driven trigger listener with bounded concurrency
"""

__version__ = "0.1.0"

from express_workflow.core.config import EngineConfig
from express_workflow.engine import Engine

__all__ = ["__version__", "Engine", "EngineConfig"]
