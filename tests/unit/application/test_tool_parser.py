"""Tests for the TOOL_CALL stream parser."""

import random

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, Field

from migrationflow.application.agent.tool_parser import (
    ParserState,
    ToolCallStreamParser,
    parse_tool_calls,
    tools_as_system_prompt,
)

RESPONSE = (
    "Let me look at the build file first.\n"
    "TOOL_CALL\n"
    "```json\n"
    '{"tool_name": "readFile", "args": {"path": "pom.xml"}}\n'
    "```\n"
    "Then I will update it."
)


def _ids():
    counter = iter(range(100))
    return lambda: f"call-{next(counter)}"


def _feed_in_chunks(text: str, sizes: list[int]) -> tuple[str, ToolCallStreamParser]:
    parser = ToolCallStreamParser(new_id=_ids())
    pieces: list[str] = []
    pos = 0
    for size in sizes:
        pieces.extend(parser.feed(text[pos:pos + size]))
        pos += size
    pieces.extend(parser.feed(text[pos:]))
    pieces.extend(parser.finish())
    return "".join(pieces), parser


class TestParseToolCalls:
    """Whole-response parsing."""

    def test_single_call(self):
        """Marker plus fenced JSON becomes one tool call, prose around it survives."""
        prose, calls = parse_tool_calls(RESPONSE, new_id=_ids())
        assert prose == "Let me look at the build file first.\nThen I will update it."
        assert len(calls) == 1
        assert calls[0]["name"] == "readFile"
        assert calls[0]["args"] == {"path": "pom.xml"}
        assert calls[0]["id"] == "call-0"

    def test_no_calls(self):
        """Plain text passes through untouched."""
        prose, calls = parse_tool_calls("Nothing to do here.")
        assert prose == "Nothing to do here."
        assert calls == []

    def test_multiple_calls(self):
        """Each fenced block after a marker is collected in order."""
        content = (
            'TOOL_CALL\n```json\n{"tool_name": "a", "args": {}}\n```\n'
            'and\nTOOL_CALL\n```\n{"tool_name": "b", "args": {"x": 1}}\n```'
        )
        prose, calls = parse_tool_calls(content, new_id=_ids())
        assert [c["name"] for c in calls] == ["a", "b"]
        assert calls[1]["args"] == {"x": 1}
        assert prose == "and\n"

    def test_fence_without_marker_is_a_call(self):
        """A fence seen before any marker opens a call block directly."""
        content = 'Here:\n```json\n{"tool_name": "searchFiles", "args": {"pattern": "*.java"}}\n```'
        prose, calls = parse_tool_calls(content)
        assert prose == "Here:\n"
        assert calls[0]["name"] == "searchFiles"

    def test_malformed_json_is_dropped(self):
        """Unparseable block is logged and skipped."""
        prose, calls = parse_tool_calls("TOOL_CALL\n```json\n{not json}\n```\ndone")
        assert calls == []
        assert prose == "done"

    def test_missing_keys_is_dropped(self):
        """JSON without tool_name/args is not a call."""
        _, calls = parse_tool_calls('TOOL_CALL\n```json\n{"name": "readFile"}\n```')
        assert calls == []

    def test_unterminated_block_is_discarded(self):
        """An open block at end of stream is neither emitted nor collected."""
        prose, calls = parse_tool_calls('Before\nTOOL_CALL\n```json\n{"tool_name": "a", "args": {}}')
        assert prose == "Before\n"
        assert calls == []

    def test_marker_without_fence_is_discarded(self):
        """Text after a dangling marker is dropped."""
        prose, calls = parse_tool_calls("Before TOOL_CALL and then nothing")
        assert prose == "Before "
        assert calls == []


class TestToolCallStreamParser:
    """Incremental feeding."""

    def test_chunking_does_not_change_result(self):
        """Random chunk boundaries yield the same prose and calls."""
        expected_prose, expected_calls = parse_tool_calls(RESPONSE, new_id=_ids())
        rng = random.Random(1234)
        for _ in range(50):
            sizes = [rng.randint(1, 7) for _ in range(rng.randint(1, 40))]
            prose, parser = _feed_in_chunks(RESPONSE, sizes)
            assert prose == expected_prose
            assert parser.tool_calls == expected_calls

    def test_single_character_chunks(self):
        """Feeding one character at a time still finds the call."""
        prose, parser = _feed_in_chunks(RESPONSE, [1] * len(RESPONSE))
        assert prose == "Let me look at the build file first.\nThen I will update it."
        assert len(parser.tool_calls) == 1

    def test_partial_marker_is_held_back(self):
        """A suffix that may start TOOL_CALL is not emitted yet."""
        parser = ToolCallStreamParser()
        assert parser.feed("Hello TOOL") == ["Hello "]
        assert parser.feed("BOX") == ["TOOLBOX"]

    def test_partial_fence_is_held_back(self):
        """Backticks at the end of a chunk wait for the next chunk."""
        parser = ToolCallStreamParser()
        assert parser.feed("text `") == ["text "]
        assert parser.feed("`") == []
        assert parser.state is ParserState.CONTENT
        parser.feed("`")
        assert parser.state is ParserState.CALL_BEGIN

    def test_state_transitions(self):
        """Marker then fence then closing fence."""
        parser = ToolCallStreamParser()
        parser.feed("TOOL_CALL\n")
        assert parser.state is ParserState.MARKER_READ
        parser.feed("```json\n")
        assert parser.state is ParserState.CALL_BEGIN
        parser.feed('{"tool_name": "a", "args": {}}\n```')
        assert parser.state is ParserState.CONTENT
        assert len(parser.tool_calls) == 1

    def test_finish_flushes_held_text(self):
        """Held-back partial delimiter is prose at end of stream."""
        parser = ToolCallStreamParser()
        assert parser.feed("ends with TOOL_") == ["ends with "]
        assert parser.finish() == ["TOOL_"]


class ReadArgs(BaseModel):
    path: str = Field(..., description="File path")


def _read(path: str) -> str:
    return path


class TestToolsAsSystemPrompt:
    """System prompt describing text-mode tools."""

    def test_empty_without_tools(self):
        """No tools means no prompt."""
        assert tools_as_system_prompt([]) == ""

    def test_lists_tools_and_convention(self):
        """Prompt names each tool and explains the marker."""
        tool = StructuredTool.from_function(
            coroutine=None, func=_read, name="readFile", description="Read a file", args_schema=ReadArgs
        )
        prompt = tools_as_system_prompt([tool])
        assert "readFile: Read a file, Args:" in prompt
        assert "TOOL_CALL" in prompt
        assert "```" in prompt
