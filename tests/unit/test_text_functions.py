"""Unit tests for the built-in text-processing functions."""

import pytest

from express_workflow.core.errors import TaskError
from express_workflow.functions.text import (
    TEXT_PIPELINE,
    decode_base64,
    generate_statistics,
    remove_special_characters,
    tokenize_and_count,
)
from express_workflow.workflow.executor import WorkflowExecutor
from express_workflow.workflow.records import ExecutionStatus
from express_workflow.workflow.registry import StepRegistry


def test_decode_base64_accepts_object_or_string() -> None:
    expected = {"statusCode": 200, "input": "SGk=", "output": "Hi"}
    assert decode_base64({"input": "SGk="}) == expected
    assert decode_base64("SGk=") == expected


@pytest.mark.parametrize("event", [{"input": "not base64!"}, {"other": "SGk="}, {"input": 42}, "/w=="])
def test_decode_base64_rejects_bad_input(event: object) -> None:
    with pytest.raises(TaskError):
        decode_base64(event)  # type: ignore[arg-type]


def test_generate_statistics() -> None:
    assert generate_statistics("a\nbc") == {"length": 4, "lines": 2, "output": "a\nbc"}
    assert generate_statistics("") == {"length": 0, "lines": 0, "output": ""}


def test_remove_special_characters_keeps_words_and_spaces() -> None:
    assert remove_special_characters("Hello, World! it's_ok") == {
        "statusCode": 200,
        "output": "Hello World its_ok",
    }


def test_tokenize_and_count() -> None:
    assert tokenize_and_count("  one two\tthree\n") == {"wordCount": 3}
    assert tokenize_and_count("") == {"wordCount": 0}


def test_non_string_input_is_a_task_error() -> None:
    with pytest.raises(TaskError):
        tokenize_and_count({"text": "x"})


def test_text_pipeline_end_to_end(text_registry: StepRegistry, executor: WorkflowExecutor) -> None:
    definition = text_registry.build_definition(TEXT_PIPELINE)

    record = executor.run(definition, {"input": "SGVsbG8sIFdvcmxkIQ=="})

    assert record.status == ExecutionStatus.SUCCEEDED
    assert record.output == {"wordCount": 2}
    assert [(e.step_name, e.output) for e in record.step_history] == [
        ("decode", "Hello, World!"),
        ("stats", "Hello, World!"),
        ("clean", "Hello World"),
        ("count", {"wordCount": 2}),
    ]


def test_text_pipeline_stops_at_decode(
    text_registry: StepRegistry, executor: WorkflowExecutor
) -> None:
    record = executor.run(text_registry.build_definition(TEXT_PIPELINE), {"input": "%%%"})

    assert record.status == ExecutionStatus.FAILED
    assert [e.step_name for e in record.step_history] == ["decode"]
    assert record.error_type == "TaskError"
