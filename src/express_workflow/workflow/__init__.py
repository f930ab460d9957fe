"""Workflow domain concepts.

This package introduces first-class types for:
- Task units (independently invocable steps)
- Output path projection between steps
- The step registry and immutable workflow definitions
- Execution records and the executor that produces them

Modules are imported directly (e.g. `express_workflow.workflow.registry`) so the
execution log can depend on the record types without an import cycle.
"""

__all__: list[str] = []
