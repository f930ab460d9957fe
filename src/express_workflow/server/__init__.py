"""HTTP API for express-workflow.

Read access to the execution log, synchronous runs and message enqueueing.
Workflow semantics stay in `express_workflow.workflow`; only routing and
request/response models live here.
"""

from __future__ import annotations

__all__ = ["create_app"]

from express_workflow.server.app import create_app
