"""Output path projection.

A Task Unit declares which part of its result becomes the next step's input,
using a small JSONPath subset:

    $                 the whole result
    $.Payload         a key
    $.a.b             nested keys
    $.items[0]        a list index
    $['odd key']      a quoted key

Paths are parsed once, at registration time, into a tuple of segments and then
evaluated against a JSON-like value tree.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from pydantic import JsonValue

from express_workflow.core.errors import PathResolutionError

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_\-]*")
_INDEX = re.compile(r"\[(-?\d+)\]")
_QUOTED = re.compile(r"""\[(?:'((?:[^'\\]|\\.)*)'|"((?:[^"\\]|\\.)*)")\]""")


@dataclass(frozen=True, slots=True)
class Key:
    name: str

    def __str__(self) -> str:
        if _IDENTIFIER.fullmatch(self.name):
            return f".{self.name}"
        escaped = self.name.replace("\\", "\\\\").replace("'", "\\'")
        return f"['{escaped}']"


@dataclass(frozen=True, slots=True)
class Index:
    position: int

    def __str__(self) -> str:
        return f"[{self.position}]"


Segment = Key | Index


def _unescape(value: str) -> str:
    return re.sub(r"\\(.)", r"\1", value)


@dataclass(frozen=True, slots=True)
class OutputPath:
    segments: tuple[Segment, ...] = ()

    @classmethod
    def parse(cls, expression: str) -> OutputPath:
        """Parse a path expression, raising ``ValueError`` on malformed input."""

        text = expression.strip()
        if not text.startswith("$"):
            raise ValueError(f"Output path must start with '$': {expression!r}")

        segments: list[Segment] = []
        pos = 1
        while pos < len(text):
            if text[pos] == ".":
                match = _IDENTIFIER.match(text, pos + 1)
                if match is None:
                    raise ValueError(f"Expected a key after '.' at offset {pos}: {expression!r}")
                segments.append(Key(match.group(0)))
                pos = match.end()
                continue

            match = _INDEX.match(text, pos)
            if match is not None:
                segments.append(Index(int(match.group(1))))
                pos = match.end()
                continue

            match = _QUOTED.match(text, pos)
            if match is not None:
                raw = match.group(1) if match.group(1) is not None else match.group(2)
                segments.append(Key(_unescape(raw)))
                pos = match.end()
                continue

            raise ValueError(f"Unexpected character {text[pos]!r} at offset {pos}: {expression!r}")

        return cls(tuple(segments))

    @property
    def is_root(self) -> bool:
        return not self.segments

    def resolve(self, value: JsonValue) -> JsonValue:
        current = value
        walked = "$"
        for segment in self.segments:
            if isinstance(segment, Key):
                if not isinstance(current, dict):
                    raise PathResolutionError(
                        str(self), f"{walked} is {_kind(current)}, not an object"
                    )
                if segment.name not in current:
                    raise PathResolutionError(str(self), f"key {segment.name!r} not found at {walked}")
                current = current[segment.name]
            else:
                if not isinstance(current, list):
                    raise PathResolutionError(str(self), f"{walked} is {_kind(current)}, not an array")
                try:
                    current = current[segment.position]
                except IndexError:
                    raise PathResolutionError(
                        str(self), f"index {segment.position} out of range at {walked}"
                    ) from None
            walked += str(segment)
        return current

    def __str__(self) -> str:
        return "$" + "".join(str(s) for s in self.segments)


ROOT = OutputPath()


def _kind(value: object) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "a boolean"
    if isinstance(value, (int, float)):
        return "a number"
    if isinstance(value, str):
        return "a string"
    return type(value).__name__
