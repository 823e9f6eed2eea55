"""Unit tests for tolerant tool-call argument parsing."""

from __future__ import annotations

import pytest

from iqrchat.services.chat.arguments import parse_tool_arguments
from iqrchat.utils.errors import ToolArgumentParseError


class TestParseToolArguments:
    def test_valid_json(self) -> None:
        assert parse_tool_arguments('{"persona_name": "Chef"}') == {"persona_name": "Chef"}

    @pytest.mark.parametrize("buffer", ["", "   ", "\n"])
    def test_empty_buffer_means_no_arguments(self, buffer: str) -> None:
        assert parse_tool_arguments(buffer) == {}

    def test_text_around_object(self) -> None:
        assert parse_tool_arguments('sure: {"name": "Sam"} done') == {"name": "Sam"}

    def test_concatenated_objects_are_merged(self) -> None:
        assert parse_tool_arguments('{"name": "Sam"}{"age": 22}') == {"name": "Sam", "age": 22}

    def test_later_object_wins_on_conflict(self) -> None:
        assert parse_tool_arguments('{"hobby": "chess"}{"hobby": "go"}') == {"hobby": "go"}

    def test_over_escaped_quotes(self) -> None:
        assert parse_tool_arguments('{\\"occupation\\": \\"nurse\\"}') == {"occupation": "nurse"}

    def test_non_object_json_is_rejected(self) -> None:
        with pytest.raises(ToolArgumentParseError):
            parse_tool_arguments("[1, 2, 3]")

    def test_garbage_raises(self) -> None:
        with pytest.raises(ToolArgumentParseError):
            parse_tool_arguments("not json at all")
