"""Tool parser - recovers tool calls from models without native tool calling.

Such models are told to answer with the word ``TOOL_CALL`` followed by a
fenced JSON block::

    TOOL_CALL
    ```json
    {"tool_name": "readFile", "args": {"path": "pom.xml"}}
    ```

``ToolCallStreamParser`` consumes the response chunk by chunk, hands back
the prose that is safe to show, and collects the calls it finds.
"""

import json
import logging
import uuid
from collections.abc import Callable, Sequence
from enum import Enum

from langchain_core.messages.tool import ToolCall, tool_call
from langchain_core.tools import BaseTool

logger = logging.getLogger(__name__)

TOOL_CALL_MARKER = "TOOL_CALL"
FENCE = "```"
_DELIMITERS = (TOOL_CALL_MARKER, FENCE)


class ParserState(str, Enum):
    """Where the parser is within the response."""

    CONTENT = "content"
    MARKER_READ = "toolCallMarkerRead"  # saw TOOL_CALL, waiting for the fence
    CALL_BEGIN = "toolCallBegin"  # inside the fenced JSON block


def _new_tool_call_id() -> str:
    return f"tool-call-{uuid.uuid4().hex[:12]}"


def _partial_delimiter_length(text: str) -> int:
    """Length of the longest suffix of text that starts a delimiter."""
    longest = 0
    for delimiter in _DELIMITERS:
        for size in range(min(len(delimiter) - 1, len(text)), 0, -1):
            if text.endswith(delimiter[:size]):
                longest = max(longest, size)
                break
    return longest


class ToolCallStreamParser:
    """Incremental parser for the TOOL_CALL text convention.

    feed() returns prose pieces in order. Their concatenation does not
    depend on how the response was split into chunks, and never includes
    call markup. Text that could be the start of a delimiter is held back
    until the next chunk decides it.
    """

    def __init__(self, new_id: Callable[[], str] | None = None) -> None:
        self._new_id = new_id or _new_tool_call_id
        self._buffer = ""
        self._state = ParserState.CONTENT
        self._skip_whitespace = False
        self.tool_calls: list[ToolCall] = []

    @property
    def state(self) -> ParserState:
        return self._state

    def feed(self, text: str) -> list[str]:
        """Consume a chunk; return prose that can be emitted now."""
        self._buffer += text
        emitted: list[str] = []
        while self._step(emitted):
            pass
        return emitted

    def finish(self) -> list[str]:
        """End of stream: flush buffered prose, drop an unterminated call."""
        emitted: list[str] = []
        if self._state is ParserState.CONTENT:
            if self._skip_whitespace:
                self._buffer = self._buffer.lstrip()
            if self._buffer:
                emitted.append(self._buffer)
        elif self._buffer:
            logger.warning("Discarding unterminated tool call block: %s", self._buffer[:200])
        self._buffer = ""
        self._state = ParserState.CONTENT
        self._skip_whitespace = False
        return emitted

    def _step(self, emitted: list[str]) -> bool:
        """Run one transition. Returns False when more input is needed."""
        if self._state is ParserState.CONTENT:
            return self._step_content(emitted)
        fence_idx = self._buffer.find(FENCE)
        if fence_idx == -1:
            return False
        if self._state is ParserState.MARKER_READ:
            self._buffer = self._buffer[fence_idx + len(FENCE):]
            self._state = ParserState.CALL_BEGIN
            return True
        # CALL_BEGIN: the first closing fence ends the block
        block = self._buffer[:fence_idx]
        self._buffer = self._buffer[fence_idx + len(FENCE):]
        self._state = ParserState.CONTENT
        self._skip_whitespace = True
        self._collect(block)
        return True

    def _step_content(self, emitted: list[str]) -> bool:
        if self._skip_whitespace:
            self._buffer = self._buffer.lstrip()
            if not self._buffer:
                return False
            self._skip_whitespace = False

        found = [
            (idx, delimiter)
            for delimiter in _DELIMITERS
            if (idx := self._buffer.find(delimiter)) != -1
        ]
        if not found:
            hold = _partial_delimiter_length(self._buffer)
            safe = self._buffer[: len(self._buffer) - hold]
            if safe:
                emitted.append(safe)
            self._buffer = self._buffer[len(safe):]
            return False

        # Whichever delimiter comes first decides the transition
        idx, delimiter = min(found)
        if idx > 0:
            emitted.append(self._buffer[:idx])
        self._buffer = self._buffer[idx + len(delimiter):]
        self._state = ParserState.MARKER_READ if delimiter == TOOL_CALL_MARKER else ParserState.CALL_BEGIN
        return True

    def _collect(self, block: str) -> None:
        text = block.strip()
        if text.startswith("json"):
            text = text[len("json"):].strip()
        if not text:
            return
        try:
            parsed = json.loads(text)
        except (ValueError, TypeError) as e:
            logger.warning("Failed to parse tool call - %s - %s", text[:200], e)
            return
        if not isinstance(parsed, dict):
            logger.warning("Malformed tool call in response - %s", text[:200])
            return
        name = parsed.get("tool_name")
        args = parsed.get("args")
        if not isinstance(name, str) or not name or not isinstance(args, dict):
            logger.warning("Malformed tool call in response - %s", text[:200])
            return
        self.tool_calls.append(tool_call(name=name, args=args, id=self._new_id()))


def parse_tool_calls(content: str, new_id: Callable[[], str] | None = None) -> tuple[str, list[ToolCall]]:
    """Parse a complete response. Returns (prose, tool calls)."""
    parser = ToolCallStreamParser(new_id=new_id)
    pieces = parser.feed(content)
    pieces.extend(parser.finish())
    return "".join(pieces), parser.tool_calls


def render_text_description_and_args(tools: Sequence[BaseTool]) -> str:
    """One line per tool: ``name: description, Args: <json schema>``."""
    lines = []
    for tool in tools:
        schema = tool.get_input_schema().model_json_schema()
        lines.append(f"{tool.name}: {tool.description}, Args: {json.dumps(schema)}\n")
    return "".join(lines)


def tools_as_system_prompt(tools: Sequence[BaseTool]) -> str:
    """System prompt teaching the TOOL_CALL convention. Empty without tools."""
    if not tools:
        return ""
    return (
        "You are an intelligent developer. You are designed to use tools to answer user questions."
        "You may not know all of the information to address user's needs. "
        "You will use relevant tools to get that information."
        "Here is the schema of tools you are given:\n\n"
        f"{render_text_description_and_args(tools)}\n"
        f"If you do need to call a tool, respond with text '{TOOL_CALL_MARKER}' on a new line "
        "followed by a JSON object on the next line containing only two keys - tool_name and args."
        "'tool_name' should be the name of the tool to call. 'args' should be nested JSON containing "
        "the arguments to pass to the function in key value format.\n"
        f"Make sure you always use {FENCE} at the start and end of the JSON block to clearly "
        "separate it from text."
        "*Crucially* you must only output one tool call at a time. After the tool call, wait for "
        "the results before considering another tool call if necessary.\n"
    )
