#!/usr/bin/env python3
"""Programmatic workflow example.

This demonstrates using the engine components directly:

* load settings from `.env`
* register an extra task unit next to the built-in text functions
* run the workflow once and print the terminal record

The text to process is passed as an argument and base64-encoded here.
"""

from __future__ import annotations

import argparse
import base64
from typing import Sequence

from express_workflow.core.config import EngineConfig
from express_workflow.engine import Engine
from express_workflow.functions.text import TEXT_PIPELINE
from express_workflow.workflow.records import ExecutionStatus


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the text workflow (programmatic example).")
    parser.add_argument("text", help="Plain text to push through the workflow")
    parser.add_argument(
        "--shout",
        action="store_true",
        help="Append an extra step that upper-cases the cleaned text before counting",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    config = EngineConfig()
    config.setup_logging()

    engine = Engine.with_text_pipeline(config)

    @engine.registry.task("shout", output_path="$.output")
    def shout(value):
        """Upper-case the text."""
        return {"output": str(value).upper()}

    steps = list(TEXT_PIPELINE)
    if args.shout:
        steps.insert(steps.index("count"), "shout")

    encoded = base64.b64encode(args.text.encode("utf-8")).decode("ascii")
    record = engine.run(engine.define(steps), {"input": encoded})

    for event in record.step_history:
        print(f"{event.step_name:<8} {event.status.value:<9} {event.output!r}")
    print(f"Execution {record.execution_id}: {record.status.value}")
    if record.status != ExecutionStatus.SUCCEEDED:
        print(f"Error ({record.error_type}): {record.error}")
        return 1

    print(f"Output: {record.output}")
    print(f"Persisted to: {config.history.path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
