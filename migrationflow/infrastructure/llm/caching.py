"""Caching provider - records model responses on disk and replays them.

Calls are cached only when the caller passes ``options["cache_key"]``; the
key becomes the cache sub directory, the serialized input (without message
ids) the entry hash.
"""

import json
import logging
from collections.abc import AsyncIterator, Sequence
from pathlib import Path
from typing import Any

from langchain_core.messages import (
    AIMessage,
    AIMessageChunk,
    BaseMessage,
    message_chunk_to_message,
    messages_from_dict,
    messages_to_dict,
)
from langchain_core.messages.tool import tool_call_chunk
from langchain_core.tools import BaseTool

from migrationflow.domain.ports.model_provider import ModelCallOptions, ModelInput, ModelProvider
from migrationflow.infrastructure.cache.response_cache import FileBasedResponseCache

logger = logging.getLogger(__name__)

LLMCache = FileBasedResponseCache[str, AIMessage]


def _without_ids(data: Any) -> Any:
    if isinstance(data, dict):
        return {k: _without_ids(v) for k, v in data.items() if k != "id"}
    if isinstance(data, list):
        return [_without_ids(v) for v in data]
    return data


def serialize_input(input: ModelInput) -> str:
    """Stable text for a model input; message and tool call ids are left out."""
    if isinstance(input, str):
        return input
    return json.dumps(_without_ids(messages_to_dict(list(input))), indent=2, sort_keys=True)


def _serialize(value: str | BaseMessage) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(messages_to_dict([value])[0], indent=2)


def _deserialize(text: str) -> AIMessage:
    message = messages_from_dict([json.loads(text)])[0]
    if not isinstance(message, AIMessage):
        raise ValueError(f"Cached response is a {message.type} message")
    return message


def create_llm_cache(cache_dir: str | Path, enabled: bool) -> LLMCache:
    return FileBasedResponseCache(
        enabled=enabled,
        serialize=_serialize,
        deserialize=_deserialize,
        cache_dir=cache_dir,
    )


def _as_chunk(message: AIMessage) -> AIMessageChunk:
    """A whole recorded response as one stream chunk."""
    return AIMessageChunk(
        content=message.content,
        id=message.id,
        response_metadata=message.response_metadata,
        tool_call_chunks=[
            tool_call_chunk(name=tc["name"], args=json.dumps(tc["args"]), id=tc.get("id"), index=i)
            for i, tc in enumerate(message.tool_calls)
        ],
    )


class CachingModelProvider:
    """Wraps a provider; cache hits never reach the model."""

    def __init__(self, inner: ModelProvider, cache: LLMCache) -> None:
        self._inner = inner
        self._cache = cache

    def bind_tools(self, tools: Sequence[BaseTool]) -> "CachingModelProvider":
        return CachingModelProvider(self._inner.bind_tools(tools), self._cache)

    def tool_calls_supported(self) -> bool:
        return self._inner.tool_calls_supported()

    def tool_calls_supported_in_streaming(self) -> bool:
        return self._inner.tool_calls_supported_in_streaming()

    def _cache_key(self, options: ModelCallOptions | None) -> str | None:
        if not self._cache.enabled or not options:
            return None
        return options.get("cache_key") or None

    async def invoke(self, input: ModelInput, options: ModelCallOptions | None = None) -> AIMessage:
        sub_dir = self._cache_key(options)
        if sub_dir is None:
            return await self._inner.invoke(input, options)

        key = serialize_input(input)
        cached = await self._cache.get(key, sub_dir=sub_dir)
        if cached is not None:
            logger.debug("Replaying cached response from %s", sub_dir)
            return cached
        response = await self._inner.invoke(input, options)
        await self._cache.set(key, response, sub_dir=sub_dir)
        return response

    async def stream(
        self,
        input: ModelInput,
        options: ModelCallOptions | None = None,
    ) -> AsyncIterator[AIMessageChunk]:
        sub_dir = self._cache_key(options)
        if sub_dir is None:
            async for chunk in self._inner.stream(input, options):
                yield chunk
            return

        key = serialize_input(input)
        cached = await self._cache.get(key, sub_dir=sub_dir)
        if cached is not None:
            logger.debug("Replaying cached stream from %s", sub_dir)
            yield _as_chunk(cached)
            return

        response: AIMessageChunk | None = None
        async for chunk in self._inner.stream(input, options):
            response = chunk if response is None else response + chunk
            yield chunk
        if response is not None:
            await self._cache.set(key, message_chunk_to_message(response), sub_dir=sub_dir)
