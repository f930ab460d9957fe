"""Unit tests for the step registry and workflow definitions."""

from __future__ import annotations

import pytest

from express_workflow.core.errors import (
    CycleError,
    DuplicateNameError,
    InvalidDefinitionError,
    UnknownStepError,
)
from express_workflow.workflow.registry import StepRegistry
from express_workflow.workflow.task import TaskUnit


def _identity(value: object) -> object:
    return value


def test_register_rejects_duplicate_and_keeps_original(registry: StepRegistry) -> None:
    original = registry.register("a", _identity, output_path="$.x")

    with pytest.raises(DuplicateNameError):
        registry.register("a", lambda v: {"replaced": True})

    assert len(registry) == 1
    assert registry.get("a") is original
    assert str(registry.get("a").output_path) == "$.x"


def test_register_with_bad_output_path_registers_nothing(registry: StepRegistry) -> None:
    with pytest.raises(ValueError):
        registry.register("a", _identity, output_path="Payload")
    assert "a" not in registry


def test_task_decorator_registers_function(registry: StepRegistry) -> None:
    @registry.task("shout", output_path="$.text")
    def shout(value):
        """Upper-case the input."""
        return {"text": str(value).upper()}

    task = registry.get("shout")
    assert task.invoke is shout
    assert task.description == "Upper-case the input."
    assert shout("hi") == {"text": "HI"}


def test_add_prebuilt_task_unit(registry: StepRegistry) -> None:
    registry.add(TaskUnit(name="prebuilt", invoke=_identity))
    assert registry.names() == ["prebuilt"]
    with pytest.raises(DuplicateNameError):
        registry.add(TaskUnit(name="prebuilt", invoke=_identity))


def test_get_unknown_step(registry: StepRegistry) -> None:
    with pytest.raises(UnknownStepError):
        registry.get("nope")


def test_build_definition_links_steps_in_order(registry: StepRegistry) -> None:
    for name in ("a", "b", "c"):
        registry.register(name, _identity)

    definition = registry.build_definition(["a", "b", "c"], workflow_id="wf")

    assert definition.workflow_id == "wf"
    assert definition.entry == "a"
    assert definition.path() == ["a", "b", "c"]
    assert definition.steps["c"].next is None
    assert len(definition) == 3


def test_build_definition_unknown_step(registry: StepRegistry) -> None:
    registry.register("a", _identity)
    with pytest.raises(UnknownStepError) as exc:
        registry.build_definition(["a", "ghost"])
    assert exc.value.name == "ghost"


def test_build_definition_repeated_name_is_a_cycle(registry: StepRegistry) -> None:
    registry.register("a", _identity)
    registry.register("b", _identity)
    with pytest.raises(CycleError) as exc:
        registry.build_definition(["a", "b", "a"])
    assert exc.value.path == ["a", "b", "a"]


def test_empty_definition_has_no_entry(registry: StepRegistry) -> None:
    definition = registry.build_definition([])
    assert definition.entry is None
    assert definition.path() == []


def test_definition_is_immutable(registry: StepRegistry) -> None:
    registry.register("a", _identity)
    definition = registry.build_definition(["a"])
    with pytest.raises(TypeError):
        definition.steps["b"] = definition.steps["a"]  # type: ignore[index]


def test_build_graph_finds_single_entry(registry: StepRegistry) -> None:
    for name in ("a", "b", "c"):
        registry.register(name, _identity)

    definition = registry.build_graph({"b": "c", "a": "b", "c": None})

    assert definition.entry == "a"
    assert definition.path() == ["a", "b", "c"]


def test_build_graph_detects_cycle(registry: StepRegistry) -> None:
    for name in ("a", "b", "c"):
        registry.register(name, _identity)
    with pytest.raises(CycleError):
        registry.build_graph({"a": "b", "b": "c", "c": "b"})


def test_build_graph_requires_one_entry(registry: StepRegistry) -> None:
    for name in ("a", "b", "c"):
        registry.register(name, _identity)
    with pytest.raises(InvalidDefinitionError):
        registry.build_graph({"a": "c", "b": "c"})


def test_build_graph_unknown_successor(registry: StepRegistry) -> None:
    registry.register("a", _identity)
    with pytest.raises(UnknownStepError):
        registry.build_graph({"a": "missing"})
