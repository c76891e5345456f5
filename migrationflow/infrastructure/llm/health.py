"""Model health check - is the model up, and can it call tools?"""

import logging
import math

from langchain_core.messages import AIMessageChunk, HumanMessage
from langchain_core.tools import BaseTool, StructuredTool
from pydantic import BaseModel, Field

from migrationflow.domain.errors import ModelHealthCheckError
from migrationflow.domain.ports.model_provider import ModelCapabilities, ModelProvider

logger = logging.getLogger(__name__)

PROBE_PROMPT = "What is the gamma of 5.5? Use the gamma tool to answer."


class GammaArgs(BaseModel):
    n: float = Field(description="Number to compute the gamma function of")


def _gamma(n: float) -> str:
    return str(math.gamma(n))


def gamma_tool() -> BaseTool:
    return StructuredTool.from_function(
        func=_gamma,
        name="gamma",
        description="Computes the gamma function of a number",
        args_schema=GammaArgs,
    )


async def model_health_check(provider: ModelProvider) -> ModelCapabilities:
    """Probe tool calling, first without and then with streaming.

    Raises ModelHealthCheckError when the model cannot even answer a plain
    prompt.
    """
    probe = [HumanMessage(content=PROBE_PROMPT)]
    bound = provider.bind_tools([gamma_tool()])
    try:
        response = await bound.invoke(probe)
        supports_tools = bool(response.tool_calls)

        supports_tools_in_streaming = False
        if supports_tools:
            merged: AIMessageChunk | None = None
            async for chunk in bound.stream(probe):
                merged = chunk if merged is None else merged + chunk
            supports_tools_in_streaming = merged is not None and bool(merged.tool_calls)

        capabilities = ModelCapabilities(
            supports_tools=supports_tools,
            supports_tools_in_streaming=supports_tools_in_streaming,
            connected=True,
        )
        logger.info(
            "Model health check passed (tools=%s, tools_in_streaming=%s)",
            supports_tools,
            supports_tools_in_streaming,
        )
        return capabilities
    except Exception as e:  # noqa: BLE001
        logger.warning("Tool probe failed, retrying without tools: %s", e)

    try:
        await provider.invoke(probe)
    except Exception as e:  # noqa: BLE001
        raise ModelHealthCheckError(f"Model did not answer the health check: {e}") from e
    return ModelCapabilities(supports_tools=False, supports_tools_in_streaming=False, connected=True)


class ProbedModelProvider:
    """Any provider, answering tool support questions from a health check."""

    def __init__(self, inner: ModelProvider, capabilities: ModelCapabilities) -> None:
        self._inner = inner
        self.capabilities = capabilities

    def stream(self, input, options=None):
        return self._inner.stream(input, options)

    async def invoke(self, input, options=None):
        return await self._inner.invoke(input, options)

    def bind_tools(self, tools) -> "ProbedModelProvider":
        return ProbedModelProvider(self._inner.bind_tools(tools), self.capabilities)

    def tool_calls_supported(self) -> bool:
        return self.capabilities.supports_tools

    def tool_calls_supported_in_streaming(self) -> bool:
        return self.capabilities.supports_tools_in_streaming
