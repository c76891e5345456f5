"""Config Port - interface for configuration access."""

from typing import Protocol

from pydantic import BaseModel


class OpenAICompatibleConfig(BaseModel):
    """LM Studio, vLLM, LocalAI, OpenAI - any /v1/chat/completions server."""

    base_url: str = "http://localhost:1234/v1"
    api_key: str = ""
    model: str = "default"
    timeout: int = 120
    temperature: float = 0.2
    # Optional: max tokens to generate. None = server/model default.
    max_tokens: int | None = None


class SolutionServerConfig(BaseModel):
    """Remote hint/incident/solution registry."""

    enabled: bool = False
    url: str = "http://localhost:8000/mcp"
    client_id: str = ""


class CacheConfig(BaseModel):
    """On-disk cache of LLM responses and tool lookups."""

    enabled: bool = False
    dir: str = "output/llm_cache"


class AgentConfig(BaseModel):
    """Agent workflow settings."""

    recursion_limit: int = 500
    enable_diagnostics_fixes: bool = True
    programming_language: str = "java"
    migration_hint: str = "JavaEE to Quarkus"


class AppConfig(BaseModel):
    """Root application configuration."""

    openai_compatible: OpenAICompatibleConfig = OpenAICompatibleConfig()
    solution_server: SolutionServerConfig = SolutionServerConfig()
    cache: CacheConfig = CacheConfig()
    agent: AgentConfig = AgentConfig()
    log_level: str = "INFO"
    log_file: str = ""  # If set, logs also go to this file (with rotation)
    log_rotation_max_mb: int = 5
    log_rotation_backups: int = 3


class ConfigPort(Protocol):
    """Interface for configuration access."""

    def get_config(self) -> AppConfig:
        """Get application configuration."""
        ...
