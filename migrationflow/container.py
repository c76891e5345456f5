"""Dependency Injection Container - builds workflow collaborators from config."""

import json
from functools import cached_property
from pathlib import Path

from migrationflow.domain.ports.config import AppConfig
from migrationflow.domain.ports.model_provider import ModelProvider
from migrationflow.infrastructure.cache import FileBasedResponseCache, InMemoryCacheWithRevisions
from migrationflow.infrastructure.clients.solution_server import SolutionServerClient
from migrationflow.infrastructure.config import load_config
from migrationflow.infrastructure.llm.caching import CachingModelProvider, create_llm_cache
from migrationflow.infrastructure.llm.openai_compatible import OpenAICompatibleProvider
from migrationflow.infrastructure.workflow import WorkflowInitOptions


class Container:
    """Lazily built, cached dependencies.

    Usage:
        container = Container()
        options = container.workflow_options(Path("/path/to/project"))
    """

    def __init__(self, config: AppConfig | None = None, config_dir: Path | None = None):
        self._config_override = config
        self._config_dir = config_dir

    @cached_property
    def config(self) -> AppConfig:
        if self._config_override:
            return self._config_override
        return load_config(self._config_dir)

    @cached_property
    def http_provider(self) -> OpenAICompatibleProvider:
        return OpenAICompatibleProvider(self.config.openai_compatible)

    @cached_property
    def model_provider(self) -> ModelProvider:
        """Chat model, wrapped in the response cache when caching is on."""
        if not self.config.cache.enabled:
            return self.http_provider
        cache = create_llm_cache(Path(self.config.cache.dir) / "llm", enabled=True)
        return CachingModelProvider(self.http_provider, cache)

    @cached_property
    def tools_cache(self) -> FileBasedResponseCache:
        return FileBasedResponseCache(
            enabled=self.config.cache.enabled,
            serialize=json.dumps,
            deserialize=json.loads,
            cache_dir=Path(self.config.cache.dir) / "tools",
        )

    @cached_property
    def solution_server(self) -> SolutionServerClient:
        settings = self.config.solution_server
        return SolutionServerClient(settings.url, enabled=settings.enabled, client_id=settings.client_id)

    def workflow_options(self, workspace_dir: Path) -> WorkflowInitOptions:
        """Options for one workflow over workspace_dir, with a fresh file cache."""
        return WorkflowInitOptions(
            model_provider=self.model_provider,
            workspace_dir=workspace_dir.resolve(),
            solution_server=self.solution_server,
            fs_cache=InMemoryCacheWithRevisions(),
            tools_cache=self.tools_cache,
            recursion_limit=self.config.agent.recursion_limit,
        )

    async def close(self) -> None:
        """Close shared HTTP resources."""
        await self.solution_server.disconnect()
        await self.http_provider.close()
