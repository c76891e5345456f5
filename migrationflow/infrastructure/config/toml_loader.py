"""TOML configuration loader with env overrides."""

import logging
import os
import tomllib
from pathlib import Path

from migrationflow.domain.ports.config import (
    AgentConfig,
    AppConfig,
    CacheConfig,
    OpenAICompatibleConfig,
    SolutionServerConfig,
)

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


def _load_toml(path: Path) -> dict:
    """Load TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def _merge(base: dict, override: dict) -> dict:
    """Merge override into base one section deep."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def _apply_env_overrides(config: dict) -> dict:
    """Apply environment variable overrides."""
    if base_url := os.getenv("OPENAI_BASE_URL"):
        config.setdefault("openai_compatible", {})["base_url"] = base_url
    if api_key := os.getenv("OPENAI_API_KEY"):
        config.setdefault("openai_compatible", {})["api_key"] = api_key.strip()
    if model := os.getenv("LLM_MODEL"):
        config.setdefault("openai_compatible", {})["model"] = model
    if url := os.getenv("SOLUTION_SERVER_URL"):
        config.setdefault("solution_server", {})["url"] = url.strip()
    if enabled := os.getenv("SOLUTION_SERVER_ENABLED"):
        config.setdefault("solution_server", {})["enabled"] = enabled.strip().lower() in _TRUTHY
    if cache_dir := os.getenv("MIGRATIONFLOW_CACHE_DIR"):
        section = config.setdefault("cache", {})
        section["dir"] = cache_dir.strip()
        section["enabled"] = True
    if level := os.getenv("LOG_LEVEL"):
        config.setdefault("logging", {})["level"] = level.upper()
    if path := os.getenv("LOG_FILE"):
        config.setdefault("logging", {})["file"] = path.strip()
    if limit := os.getenv("AGENT_RECURSION_LIMIT"):
        try:
            config.setdefault("agent", {})["recursion_limit"] = int(limit)
        except ValueError:
            logger.warning("Invalid AGENT_RECURSION_LIMIT env value: %r, ignoring", limit)
    return config


def load_config(config_dir: Path | None = None) -> AppConfig:
    """Load configuration from TOML files with env overrides.

    Loads default.toml, then development.toml if exists.
    """
    if config_dir is None:
        config_dir = Path(__file__).resolve().parent.parent.parent.parent / "config"

    config: dict = {}

    default_path = config_dir / "default.toml"
    if default_path.exists():
        config = _load_toml(default_path)

    dev_path = config_dir / "development.toml"
    if dev_path.exists():
        config = _merge(config, _load_toml(dev_path))

    config = _apply_env_overrides(config)

    logging_raw = config.get("logging") or {}
    return AppConfig(
        openai_compatible=OpenAICompatibleConfig(**(config.get("openai_compatible") or {})),
        solution_server=SolutionServerConfig(**(config.get("solution_server") or {})),
        cache=CacheConfig(**(config.get("cache") or {})),
        agent=AgentConfig(**(config.get("agent") or {})),
        log_level=logging_raw.get("level", "INFO"),
        log_file=(logging_raw.get("file") or "").strip(),
        log_rotation_max_mb=int(logging_raw.get("log_rotation_max_mb", 5)),
        log_rotation_backups=int(logging_raw.get("log_rotation_backups", 3)),
    )
