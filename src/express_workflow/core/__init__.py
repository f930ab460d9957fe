"""Core package: configuration, logging and the error taxonomy.

These modules have no dependencies inside the project so every other package can
import them.
"""

from express_workflow.core.config import EngineConfig

__all__ = [
    "EngineConfig",
]
