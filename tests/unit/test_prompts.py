# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from adapters.llm.prompts import (
    LESSONS_HEADING,
    LESSONS_INSERTION_MARKER,
    OPERATOR_INSTRUCTIONS_V1,
    compose_operator_instructions,
)


def test_lessons_are_inserted_once_before_the_opening_script() -> None:
    composed = compose_operator_instructions(["Ask about pets early"])

    assert composed.count("Ask about pets early") == 1
    assert composed.count(LESSONS_HEADING) == 1
    assert composed.index("1. Ask about pets early") < composed.index(LESSONS_INSERTION_MARKER)
    assert composed.count(LESSONS_INSERTION_MARKER) == 1


def test_everything_outside_the_block_is_preserved() -> None:
    composed = compose_operator_instructions(["a", "b"])
    head, tail = OPERATOR_INSTRUCTIONS_V1.split(LESSONS_INSERTION_MARKER, 1)

    assert composed.startswith(head)
    assert composed.endswith(LESSONS_INSERTION_MARKER + tail)
    assert "1. a\n2. b" in composed


def test_empty_lessons_leave_template_unchanged() -> None:
    assert compose_operator_instructions([]) == OPERATOR_INSTRUCTIONS_V1


def test_custom_template_without_marker_is_rejected() -> None:
    with pytest.raises(ValueError):
        compose_operator_instructions(["x"], template="no insertion point here")
