"""Model Provider Port - interface for chat models driven by workflow nodes."""

from collections.abc import AsyncIterator, Sequence
from typing import Protocol, TypedDict

from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage
from langchain_core.tools import BaseTool
from pydantic import BaseModel

ModelInput = str | Sequence[BaseMessage]


class ModelCallOptions(TypedDict, total=False):
    """Per-call options."""

    cache_key: str  # sub directory for replayable LLM responses


class ModelCapabilities(BaseModel):
    """What a model can do, as found by the health check."""

    supports_tools: bool = False
    supports_tools_in_streaming: bool = False
    connected: bool = False


class ModelProvider(Protocol):
    """Interface for chat model providers.

    Any vendor meeting this contract is interchangeable.
    """

    def stream(
        self,
        input: ModelInput,
        options: ModelCallOptions | None = None,
    ) -> AsyncIterator[AIMessageChunk]:
        """Stream response chunks."""
        ...

    async def invoke(
        self,
        input: ModelInput,
        options: ModelCallOptions | None = None,
    ) -> AIMessage:
        """Return the full response."""
        ...

    def bind_tools(self, tools: Sequence[BaseTool]) -> "ModelProvider":
        """Return a provider that offers tools to the model natively."""
        ...

    def tool_calls_supported(self) -> bool:
        ...

    def tool_calls_supported_in_streaming(self) -> bool:
        ...
