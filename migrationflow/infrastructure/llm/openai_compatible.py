"""OpenAI-compatible provider - LM Studio, vLLM, LocalAI, OpenAI."""

import json
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx
from langchain_core.messages import (
    AIMessage,
    AIMessageChunk,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from langchain_core.messages.tool import tool_call, tool_call_chunk
from langchain_core.tools import BaseTool
from langchain_core.utils.function_calling import convert_to_openai_tool
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from migrationflow.domain.ports.config import OpenAICompatibleConfig
from migrationflow.domain.ports.model_provider import ModelCallOptions, ModelCapabilities, ModelInput
from migrationflow.shared.messages import content_to_text

logger = logging.getLogger(__name__)


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Malformed tool call arguments from model: %s", raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


def messages_to_openai(input: ModelInput) -> list[dict[str, Any]]:
    """Convert langchain messages to the /chat/completions wire format."""
    if isinstance(input, str):
        return [{"role": "user", "content": input}]
    out: list[dict[str, Any]] = []
    for m in input:
        content = content_to_text(m.content)
        if isinstance(m, SystemMessage):
            out.append({"role": "system", "content": content})
        elif isinstance(m, ToolMessage):
            out.append({"role": "tool", "content": content, "tool_call_id": m.tool_call_id})
        elif isinstance(m, AIMessage):
            entry: dict[str, Any] = {"role": "assistant", "content": content}
            if m.tool_calls:
                entry["tool_calls"] = [
                    {
                        "id": tc.get("id") or "",
                        "type": "function",
                        "function": {"name": tc["name"], "arguments": json.dumps(tc.get("args") or {})},
                    }
                    for tc in m.tool_calls
                ]
            out.append(entry)
        elif isinstance(m, HumanMessage):
            out.append({"role": "user", "content": content})
        else:
            out.append({"role": getattr(m, "role", "user"), "content": content})
    return out


class OpenAICompatibleProvider:
    """Model provider speaking /v1/chat/completions.

    Tool support is decided up front (see the health check) and passed in as
    capabilities; bind_tools returns a provider sharing the same HTTP client.
    """

    def __init__(
        self,
        config: OpenAICompatibleConfig,
        capabilities: ModelCapabilities | None = None,
        tools: Sequence[dict[str, Any]] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._base_url = config.base_url.rstrip("/")
        self._headers = {"Content-Type": "application/json"}
        if config.api_key:
            self._headers["Authorization"] = f"Bearer {config.api_key}"
        self.capabilities = capabilities or ModelCapabilities()
        self._tools = list(tools) if tools else None
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create persistent async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._config.timeout,
                headers=self._headers,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def with_capabilities(self, capabilities: ModelCapabilities) -> "OpenAICompatibleProvider":
        return OpenAICompatibleProvider(self._config, capabilities, self._tools, self._client)

    def bind_tools(self, tools: Sequence[BaseTool]) -> "OpenAICompatibleProvider":
        return OpenAICompatibleProvider(
            self._config,
            self.capabilities,
            [convert_to_openai_tool(tool) for tool in tools],
            self._get_client(),
        )

    def tool_calls_supported(self) -> bool:
        return self.capabilities.supports_tools

    def tool_calls_supported_in_streaming(self) -> bool:
        return self.capabilities.supports_tools_in_streaming

    def _chat_body(self, input: ModelInput, stream: bool) -> dict[str, Any]:
        """Build request body; optional max_tokens from config."""
        body: dict[str, Any] = {
            "model": self._config.model,
            "messages": messages_to_openai(input),
            "temperature": self._config.temperature,
            "stream": stream,
        }
        if self._config.max_tokens is not None:
            body["max_tokens"] = self._config.max_tokens
        if self._tools:
            body["tools"] = self._tools
        return body

    @retry(
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def invoke(self, input: ModelInput, options: ModelCallOptions | None = None) -> AIMessage:
        """Single non-streaming completion. Retries on network errors."""
        body = self._chat_body(input, stream=False)
        resp = await self._get_client().post(f"{self._base_url}/chat/completions", json=body)
        if resp.status_code >= 400:
            logger.error("LLM API error %s: %s", resp.status_code, resp.text[:500])
        resp.raise_for_status()
        data = resp.json()

        choice = (data.get("choices") or [{}])[0]
        message = choice.get("message") or {}
        calls = [
            tool_call(
                name=(tc.get("function") or {}).get("name", ""),
                args=_parse_arguments((tc.get("function") or {}).get("arguments")),
                id=tc.get("id") or None,
            )
            for tc in message.get("tool_calls") or []
        ]
        return AIMessage(
            content=message.get("content") or "",
            tool_calls=calls,
            id=data.get("id"),
            response_metadata={
                "model_name": data.get("model", self._config.model),
                "finish_reason": choice.get("finish_reason"),
            },
        )

    async def stream(
        self,
        input: ModelInput,
        options: ModelCallOptions | None = None,
    ) -> AsyncIterator[AIMessageChunk]:
        """Stream chunks; tool call deltas arrive as tool_call_chunks."""
        body = self._chat_body(input, stream=True)
        async with self._get_client().stream(
            "POST",
            f"{self._base_url}/chat/completions",
            json=body,
        ) as resp:
            if resp.status_code >= 400:
                err_text = (await resp.aread()).decode("utf-8", errors="replace")
                logger.error("LLM API error %s: %s", resp.status_code, err_text[:500])
                raise httpx.HTTPStatusError(
                    f"LLM API error {resp.status_code}: {err_text[:200]}",
                    request=resp.request,
                    response=resp,
                )
            async for line in resp.aiter_lines():
                if not line.startswith("data: "):
                    continue
                chunk = line[6:]
                if chunk.strip() == "[DONE]":
                    break
                try:
                    data = json.loads(chunk)
                except json.JSONDecodeError:
                    logger.debug("Malformed JSON chunk in stream: %s", chunk[:100])
                    continue
                choice = (data.get("choices") or [{}])[0]
                delta = choice.get("delta") or {}
                call_chunks = [
                    tool_call_chunk(
                        name=(tc.get("function") or {}).get("name"),
                        args=(tc.get("function") or {}).get("arguments"),
                        id=tc.get("id"),
                        index=tc.get("index", 0),
                    )
                    for tc in delta.get("tool_calls") or []
                ]
                metadata = {"finish_reason": choice["finish_reason"]} if choice.get("finish_reason") else {}
                if not delta.get("content") and not call_chunks and not metadata:
                    continue
                yield AIMessageChunk(
                    content=delta.get("content") or "",
                    tool_call_chunks=call_chunks,
                    id=data.get("id"),
                    response_metadata=metadata,
                )
