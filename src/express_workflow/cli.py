"""CLI entrypoint for the workflow engine.

Wires an engine with the built-in text functions, builds the default workflow
and either runs it once, feeds its queue, serves its queue, or reads its
execution log.
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from types import FrameType

from pydantic import ValidationError

from express_workflow import __version__
from express_workflow.core.config import EngineConfig
from express_workflow.core.errors import NotFoundError, RegistryError
from express_workflow.engine import Engine
from express_workflow.workflow.records import ExecutionStatus

logger = logging.getLogger(__name__)


def _parse_steps(value: str | None) -> list[str] | None:
    if value is None:
        return None
    return [p.strip() for p in value.split(",") if p.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="express-workflow",
        description="Run queue-triggered text-processing workflows",
    )
    parser.add_argument("--version", action="version", version=f"express-workflow {__version__}")
    parser.add_argument(
        "--steps",
        default=None,
        help="Comma-separated step names to chain (default: decode,stats,clean,count)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run the workflow once, synchronously")
    source = run.add_mutually_exclusive_group(required=True)
    source.add_argument("--input", help="Workflow input as JSON")
    source.add_argument("--input-file", help="Path to a JSON file holding the workflow input")
    run.add_argument("--execution-id", default=None, help="Explicit execution id")

    send = subparsers.add_parser("send", help="Enqueue a trigger message")
    send.add_argument("--body", required=True, help="Message body (usually JSON)")

    listen = subparsers.add_parser("listen", help="Start one execution per queue message")
    listen.add_argument(
        "--max-in-flight",
        type=int,
        default=None,
        help="Override the maximum number of concurrent runs",
    )

    history = subparsers.add_parser("history", help="Show an execution record")
    history.add_argument("execution_id", help="Execution id")

    executions = subparsers.add_parser("executions", help="List recorded executions")
    executions.add_argument(
        "--status",
        choices=[s.value for s in ExecutionStatus],
        default=None,
        help="Only show executions in this status",
    )
    executions.add_argument("--limit", type=int, default=20, help="Maximum rows to show")

    subparsers.add_parser("steps", help="Show registered task units and the workflow")

    return parser


def _listen(engine: Engine, definition_steps: list[str] | None, max_in_flight: int | None) -> int:
    if max_in_flight is not None:
        engine.config.listener.max_in_flight = max_in_flight
    definition = engine.define(definition_steps)
    listener = engine.listener(definition)
    stop = threading.Event()

    def _handle(signum: int, _frame: FrameType | None) -> None:
        logger.info("Shutdown signal received", extra={"signal": signum})
        stop.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)

    listener.start()
    try:
        stop.wait()
    finally:
        listener.stop(wait=True)
        listener.queue.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = EngineConfig()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    config.setup_logging()
    steps = _parse_steps(args.steps)

    try:
        engine = Engine.with_text_pipeline(config)

        if args.command == "run":
            raw = args.input
            if args.input_file is not None:
                with open(args.input_file, encoding="utf-8") as f:
                    raw = f.read()
            try:
                value = json.loads(raw)
            except json.JSONDecodeError as e:
                print(f"Input is not valid JSON: {e}", file=sys.stderr)
                return 2
            record = engine.run(engine.define(steps), value, execution_id=args.execution_id)
            print(record.model_dump_json(indent=2))
            return 0 if record.status == ExecutionStatus.SUCCEEDED else 4

        if args.command == "send":
            queue = engine.create_queue()
            try:
                message_id = queue.send(args.body)
            finally:
                queue.close()
            print(message_id)
            return 0

        if args.command == "listen":
            return _listen(engine, steps, args.max_in_flight)

        if args.command == "history":
            record = engine.get_execution(args.execution_id)
            print(record.model_dump_json(indent=2))
            return 0

        if args.command == "executions":
            status = ExecutionStatus(args.status) if args.status else None
            for record in engine.execution_log.list(status=status, limit=args.limit):
                print(
                    f"{record.execution_id}  {record.status.value:<9}  "
                    f"{record.start_time.isoformat()}  steps={len(record.step_history)}"
                )
            return 0

        if args.command == "steps":
            for task in engine.registry:
                print(f"{task.name:<10} output_path={task.output_path}  {task.description}")
            print(json.dumps(engine.define(steps).describe(), indent=2))
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except RegistryError as e:
        print(f"Invalid workflow: {e}", file=sys.stderr)
        return 2

    except NotFoundError as e:
        print(str(e), file=sys.stderr)
        return 3

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
