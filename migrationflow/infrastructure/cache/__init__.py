"""Caches - disk-backed response cache and in-memory revision cache."""

from migrationflow.infrastructure.cache.response_cache import (
    CacheFilePaths,
    FileBasedResponseCache,
)
from migrationflow.infrastructure.cache.revision_cache import (
    ALL_REVISIONS,
    InMemoryCacheWithRevisions,
)

__all__ = [
    "ALL_REVISIONS",
    "CacheFilePaths",
    "FileBasedResponseCache",
    "InMemoryCacheWithRevisions",
]
