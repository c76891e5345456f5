"""Base node - model calls, tool binding and tool execution for workflow nodes."""

import json
import logging
import random
import re
import string
import time
from collections.abc import AsyncIterator, Sequence
from typing import Any

from langchain_core.messages import (
    AIMessage,
    AIMessageChunk,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from langchain_core.tools import BaseTool

from migrationflow.application.agent.tool_parser import ToolCallStreamParser, tools_as_system_prompt
from migrationflow.domain.entities.workflow_messages import (
    ErrorMessage,
    LLMResponseChunkMessage,
    LLMResponseMessage,
    MessageSink,
    ToolCallEvent,
    ToolCallMessage,
    ToolCallStatus,
    WorkflowMessage,
    discard_messages,
)
from migrationflow.domain.ports.model_provider import ModelCallOptions, ModelInput, ModelProvider
from migrationflow.shared.messages import content_to_text

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_letters + string.digits


class BaseNode:
    """Shared substrate for workflow nodes.

    Wraps a model provider, decides between native tool calling and the
    TOOL_CALL text convention, and runs the tools a model asks for. All
    messages go to the sink supplied by the owning workflow.
    """

    def __init__(
        self,
        name: str,
        model_provider: ModelProvider,
        tools: Sequence[BaseTool] = (),
        sink: MessageSink | None = None,
    ) -> None:
        self.name = name
        self._model_provider = model_provider
        self._tools = list(tools)
        self._sink = sink or discard_messages

    @property
    def tools(self) -> list[BaseTool]:
        return list(self._tools)

    def set_sink(self, sink: MessageSink) -> None:
        self._sink = sink

    def emit(self, message: WorkflowMessage) -> None:
        self._sink(message)

    def new_message_id(self, prefix: str = "res") -> str:
        suffix = "".join(random.choices(_ID_ALPHABET, k=5))
        return f"{prefix}-{self.name}-{int(time.time() * 1000)}-{suffix}"

    def get_tools_matching_selectors(self, selectors: Sequence[str] | None = None) -> list[BaseTool]:
        """Tools whose name equals a selector or matches it as a regex."""
        if not selectors:
            return list(self._tools)
        matched = []
        for tool in self._tools:
            for selector in selectors:
                if selector == tool.name:
                    matched.append(tool)
                    break
                try:
                    if re.search(selector, tool.name):
                        matched.append(tool)
                        break
                except re.error:
                    continue
        return matched

    async def stream_or_invoke(
        self,
        input: ModelInput,
        enable_tools: bool = True,
        emit_response_chunks: bool = True,
        tools_selectors: Sequence[str] | None = None,
        options: ModelCallOptions | None = None,
    ) -> AIMessage | AIMessageChunk | None:
        """Call the model, streaming where possible.

        Returns None when no usable response could be obtained; the failure
        is logged and, if chunk emission is on, reported as an ErrorMessage.
        """
        message_id = self.new_message_id()
        provider = self._model_provider
        try:
            if not enable_tools or not self._tools:
                return await self._process_stream(
                    message_id,
                    provider.stream(input, options),
                    parse_tool_calls=False,
                    emit_response_chunks=emit_response_chunks,
                )

            tools = self.get_tools_matching_selectors(tools_selectors)
            if not provider.tool_calls_supported():
                return await self._process_stream(
                    message_id,
                    provider.stream(self._input_with_tools(input, tools), options),
                    parse_tool_calls=True,
                    emit_response_chunks=emit_response_chunks,
                )

            runnable = provider.bind_tools(tools)
            if not provider.tool_calls_supported_in_streaming():
                response = await runnable.invoke(input, options)
                if emit_response_chunks:
                    self.emit(LLMResponseMessage(id=message_id, data=response))
                    self._emit_proposed_tool_calls(response)
                return response

            return await self._process_stream(
                message_id,
                runnable.stream(input, options),
                parse_tool_calls=False,
                emit_response_chunks=emit_response_chunks,
            )
        except Exception as e:  # noqa: BLE001
            logger.exception("Node %s failed to get a model response", self.name)
            if emit_response_chunks:
                self.emit(ErrorMessage(id=message_id, data=f"Failed to get llm response - {e}"))
            return None

    async def _process_stream(
        self,
        message_id: str,
        stream: AsyncIterator[AIMessageChunk],
        parse_tool_calls: bool,
        emit_response_chunks: bool,
    ) -> AIMessage | AIMessageChunk | None:
        """Re-assemble a chunk stream, recovering text tool calls if asked to."""
        response: AIMessageChunk | None = None
        parser = ToolCallStreamParser(new_id=lambda: self.new_message_id("tool-call")) if parse_tool_calls else None

        def emit_text(pieces: list[str]) -> None:
            if not emit_response_chunks:
                return
            for piece in pieces:
                self.emit(LLMResponseChunkMessage(id=message_id, data=AIMessageChunk(content=piece)))

        async for chunk in stream:
            response = chunk if response is None else response + chunk
            if parser is None:
                if emit_response_chunks:
                    self.emit(LLMResponseChunkMessage(id=message_id, data=chunk))
                continue
            emit_text(parser.feed(content_to_text(chunk.content)))

        if parser is None:
            if response is not None and emit_response_chunks:
                self._emit_proposed_tool_calls(response)
            return response

        emit_text(parser.finish())
        if response is None:
            return None
        message = AIMessage(
            content=response.content,
            tool_calls=parser.tool_calls,
            id=response.id or message_id,
            response_metadata=response.response_metadata,
        )
        if emit_response_chunks:
            self._emit_proposed_tool_calls(message)
        return message

    def _emit_proposed_tool_calls(self, message: AIMessage) -> None:
        for call in message.tool_calls:
            call_id = call.get("id") or self.new_message_id("tool-call")
            self.emit(
                ToolCallMessage(
                    id=call_id,
                    data=ToolCallEvent(
                        id=call_id,
                        name=call["name"],
                        args=json.dumps(call["args"]),
                        status=ToolCallStatus.GENERATING,
                    ),
                )
            )

    def _input_with_tools(self, input: ModelInput, tools: Sequence[BaseTool]) -> list[BaseMessage]:
        """Describe tools in the system prompt for models without native tool calls."""
        prompt = tools_as_system_prompt(tools)
        if isinstance(input, str):
            return [SystemMessage(content=prompt), HumanMessage(content=input)]
        messages = list(input)
        if messages and isinstance(messages[0], SystemMessage):
            messages[0] = SystemMessage(content=content_to_text(messages[0].content) + prompt)
        else:
            messages.insert(0, SystemMessage(content=prompt))
        # Earlier tool calls would confuse a model that only knows the text convention
        return [
            m.model_copy(update={"tool_calls": []}) if isinstance(m, AIMessage) and m.tool_calls else m
            for m in messages
        ]

    async def run_tools(self, state: dict[str, Any]) -> dict[str, list[BaseMessage]]:
        """Run the tool calls proposed by the last assistant message, one at a time."""
        messages = state.get("messages") or []
        last = messages[-1] if messages else None
        calls = list(getattr(last, "tool_calls", None) or [])
        native = self._model_provider.tool_calls_supported()
        tools_by_name = {tool.name: tool for tool in self._tools}

        tool_messages: list[BaseMessage] = []
        text_results: list[str] = []
        for call in calls:
            name = call["name"]
            args = call.get("args") or {}
            tool = tools_by_name.get(name)
            if tool is None:
                logger.warning("Model asked for unknown tool %s", name)
                return {"messages": [HumanMessage(content=f"The tool {name} does not exist")]}

            call_id = call.get("id") or self.new_message_id("tool-call")
            encoded_args = json.dumps(args)
            self._emit_tool_status(call_id, name, encoded_args, ToolCallStatus.RUNNING)
            try:
                result = await tool.ainvoke(args)
            except Exception as e:  # noqa: BLE001
                logger.warning("Tool %s failed: %s", name, e)
                self._emit_tool_status(call_id, name, encoded_args, ToolCallStatus.FAILED)
                if native:
                    tool_messages.append(ToolMessage(content=str(e), tool_call_id=call_id, name=name))
                else:
                    text_results.append(
                        f"There was an error running the tool {name} with args {encoded_args} - {e}"
                    )
                continue

            self._emit_tool_status(call_id, name, encoded_args, ToolCallStatus.SUCCEEDED)
            output = result if isinstance(result, str) else json.dumps(result, default=str)
            if native:
                tool_messages.append(ToolMessage(content=output, tool_call_id=call_id, name=name))
            else:
                text_results.append(f"The response from the tool {name} is:\n```{output}```")

        if native:
            return {"messages": tool_messages}
        if not text_results:
            return {"messages": []}
        return {"messages": [HumanMessage(content="\n\n".join(text_results))]}

    def _emit_tool_status(self, call_id: str, name: str, args: str, status: ToolCallStatus) -> None:
        self.emit(
            ToolCallMessage(
                id=call_id,
                data=ToolCallEvent(id=call_id, name=name, args=args, status=status),
            )
        )

    @staticmethod
    def ai_message_to_string(message: BaseMessage | None) -> str:
        if message is None:
            return ""
        if isinstance(message.content, str):
            return message.content
        return json.dumps(message.content) if message.content else ""


def has_tool_calls(state: dict[str, Any]) -> bool:
    """True when the last message is an assistant message proposing tool calls."""
    messages = state.get("messages") or []
    if not messages:
        return False
    last = messages[-1]
    return isinstance(last, AIMessage) and bool(last.tool_calls)
