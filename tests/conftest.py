"""Pytest configuration and shared fixtures."""

import json
import random
from collections.abc import AsyncIterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.messages import AIMessage, AIMessageChunk
from langchain_core.messages.tool import tool_call_chunk

from migrationflow.domain.ports.solution_server import CreatedIncidents

ScriptedResponse = str | AIMessage | Exception


def split_randomly(text: str, rng: random.Random) -> list[str]:
    """Split text into 1-8 character pieces."""
    pieces = []
    pos = 0
    while pos < len(text):
        size = rng.randint(1, 8)
        pieces.append(text[pos:pos + size])
        pos += size
    return pieces


class FakeModelProvider:
    """Scripted model provider.

    Each stream() or invoke() call consumes the next scripted response. Text
    is streamed in random chunks; an AIMessage keeps its tool calls; an
    exception is raised from the call.
    """

    def __init__(
        self,
        responses: list[ScriptedResponse] | None = None,
        supports_tools: bool = False,
        supports_tools_in_streaming: bool = False,
        seed: int = 42,
    ) -> None:
        self.responses = list(responses or [])
        self.supports_tools = supports_tools
        self.supports_tools_in_streaming = supports_tools_in_streaming
        self.calls: list = []  # (input, options) per call
        self.bound_tools: list = []
        self._rng = random.Random(seed)

    def _next(self) -> ScriptedResponse:
        if not self.responses:
            raise AssertionError("FakeModelProvider ran out of scripted responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def stream(self, input, options=None) -> AsyncIterator[AIMessageChunk]:
        self.calls.append((input, options))
        response = self._next()
        if isinstance(response, AIMessage):
            yield AIMessageChunk(
                content=response.content,
                id=response.id,
                tool_call_chunks=[
                    tool_call_chunk(name=tc["name"], args=json.dumps(tc["args"]), id=tc["id"], index=i)
                    for i, tc in enumerate(response.tool_calls)
                ],
            )
            return
        for piece in split_randomly(response, self._rng):
            yield AIMessageChunk(content=piece, id="fake-response")

    async def invoke(self, input, options=None) -> AIMessage:
        self.calls.append((input, options))
        response = self._next()
        if isinstance(response, AIMessage):
            return response
        return AIMessage(content=response, id="fake-response")

    def bind_tools(self, tools):
        self.bound_tools = list(tools)
        return self

    def tool_calls_supported(self) -> bool:
        return self.supports_tools

    def tool_calls_supported_in_streaming(self) -> bool:
        return self.supports_tools_in_streaming


@pytest.fixture
def fake_provider():
    """Factory for scripted providers."""

    def make(*responses: ScriptedResponse, **kwargs) -> FakeModelProvider:
        return FakeModelProvider(list(responses), **kwargs)

    return make


@pytest.fixture
def solution_server():
    """Solution server stub behaving like a disconnected client."""
    server = MagicMock()
    server.get_best_hint = AsyncMock(return_value=None)
    server.create_incident = AsyncMock(return_value=-1)
    server.create_multiple_incidents = AsyncMock(return_value=CreatedIncidents(ids=[1, 2], created_count=2))
    server.create_solution = AsyncMock(return_value=7)
    server.accept_file = AsyncMock(return_value=None)
    server.reject_file = AsyncMock(return_value=None)
    return server


@pytest.fixture
def sink():
    """Message sink that records everything emitted."""
    messages = []

    def record(message):
        messages.append(message)

    record.messages = messages
    return record
