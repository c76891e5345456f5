"""In-memory cache that keeps a stack of revisions per key.

Backs the write-behind file cache: edits land here first so later reads in
the same run see them without touching the disk.
"""

from collections.abc import Hashable
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

ALL_REVISIONS = -1


class InMemoryCacheWithRevisions(Generic[K, V]):
    """Key -> LIFO stack of values. A disabled cache stores nothing."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self._cache: dict[K, list[V]] = {}

    def __contains__(self, key: K) -> bool:
        return bool(self._cache.get(key))

    def get(self, key: K) -> V | None:
        """Most recent revision, or None."""
        if not self.enabled:
            return None
        stack = self._cache.get(key)
        return stack[-1] if stack else None

    def set(self, key: K, value: V) -> None:
        """Push a new revision."""
        if not self.enabled:
            return
        self._cache.setdefault(key, []).append(value)

    def invalidate(self, key: K, max_revisions: int = 1) -> None:
        """Pop the newest max_revisions revisions; ALL_REVISIONS drops the key."""
        if not self.enabled:
            return
        stack = self._cache.get(key)
        if not stack:
            return
        if max_revisions == ALL_REVISIONS:
            del self._cache[key]
            return
        del stack[max(len(stack) - max_revisions, 0):]
        if not stack:
            del self._cache[key]

    def reset(self) -> None:
        if not self.enabled:
            return
        self._cache.clear()
