"""Built-in text-processing task units.

The default workflow chains them as decode -> stats -> clean -> count:

    {"input": "SGVsbG8sIFdvcmxkIQ=="}
      decode  -> "Hello, World!"
      stats   -> "Hello, World!"        (length and line count recorded)
      clean   -> "Hello World"
      count   -> {"wordCount": 2}
"""

from __future__ import annotations

import base64
import binascii
import re

from pydantic import JsonValue

from express_workflow.core.errors import TaskError
from express_workflow.workflow.registry import StepRegistry

TEXT_PIPELINE: tuple[str, ...] = ("decode", "stats", "clean", "count")

_SPECIAL_CHARACTERS = re.compile(r"[^\w\s]", re.UNICODE)


def _require_text(value: JsonValue, step: str) -> str:
    if not isinstance(value, str):
        raise TaskError(
            f"{step} expects a string, got {type(value).__name__}",
            details={"step": step},
        )
    return value


def decode_base64(event: JsonValue) -> JsonValue:
    """Decode a base64 string (either bare or under the "input" key)."""

    encoded = event.get("input") if isinstance(event, dict) else event
    if encoded is None:
        raise TaskError("decode expects an object with an 'input' field")
    encoded = _require_text(encoded, "decode")
    try:
        decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise TaskError(f"Input is not base64-encoded UTF-8 text: {e}") from e
    return {"statusCode": 200, "input": encoded, "output": decoded}


def generate_statistics(event: JsonValue) -> JsonValue:
    """Record simple statistics about the text and pass it through."""

    text = _require_text(event, "stats")
    return {
        "length": len(text),
        "lines": len(text.splitlines()) if text else 0,
        "output": text,
    }


def remove_special_characters(event: JsonValue) -> JsonValue:
    """Keep letters, digits, underscores and whitespace."""

    text = _require_text(event, "clean")
    return {"statusCode": 200, "output": _SPECIAL_CHARACTERS.sub("", text)}


def tokenize_and_count(event: JsonValue) -> JsonValue:
    """Split on whitespace and count the tokens."""

    text = _require_text(event, "count")
    return {"wordCount": len(text.split())}


def register_text_functions(registry: StepRegistry, *, timeout_seconds: float | None = None) -> None:
    registry.register(
        "decode",
        decode_base64,
        output_path="$.output",
        timeout_seconds=timeout_seconds,
        description="Decode a base64 string",
    )
    registry.register(
        "stats",
        generate_statistics,
        output_path="$.output",
        timeout_seconds=timeout_seconds,
        description="Generate text statistics",
    )
    registry.register(
        "clean",
        remove_special_characters,
        output_path="$.output",
        timeout_seconds=timeout_seconds,
        description="Remove special characters",
    )
    registry.register(
        "count",
        tokenize_and_count,
        timeout_seconds=timeout_seconds,
        description="Tokenize and count words",
    )
