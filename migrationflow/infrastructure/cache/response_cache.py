"""File-based response cache - content-addressed inputs and outputs on disk.

Used to make LLM calls and remote lookups replayable across runs. Layout::

    <cache_dir>/<sub_dir>/<hash>/input<ext>
    <cache_dir>/<sub_dir>/<hash>/output<ext>
"""

import asyncio
import hashlib
import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")

HASH_LENGTH = 16


@dataclass(frozen=True)
class CacheFilePaths:
    """Files written by a successful set()."""

    input_record_path: Path
    output_record_path: Path


class FileBasedResponseCache(Generic[K, V]):
    """Disk cache keyed by a digest of the serialized input.

    get() and set() never raise: failures are logged and reported as a miss
    (None). A single writer per cache root is assumed.
    """

    def __init__(
        self,
        enabled: bool,
        serialize: Callable[[K | V], str],
        deserialize: Callable[[str], V],
        cache_dir: str | Path,
        hash_function: Callable[[K], str] | None = None,
    ) -> None:
        self.enabled = enabled
        self._serialize = serialize
        self._deserialize = deserialize
        self._cache_dir = Path(cache_dir)
        self._hash_function = hash_function

    def _hash(self, key: K) -> str:
        if self._hash_function is not None:
            return self._hash_function(key)
        digest = hashlib.sha256(self._serialize(key).encode("utf-8")).hexdigest()
        return digest[:HASH_LENGTH]

    def _entry_dir(self, key: K, sub_dir: str) -> Path:
        return self._cache_dir / sub_dir / self._hash(key)

    async def get(
        self,
        key: K,
        sub_dir: str = "",
        output_ext: str = ".json",
    ) -> V | None:
        """Return the cached value for key, or None on miss or error."""
        if not self.enabled:
            return None
        path = self._entry_dir(key, sub_dir) / f"output{output_ext}"
        try:
            if not path.is_file():
                return None
            data = await asyncio.to_thread(path.read_text, encoding="utf-8")
            return self._deserialize(data)
        except Exception as e:  # noqa: BLE001
            logger.error("Error looking up cache entry %s: %s", path, e)
            return None

    async def set(
        self,
        key: K,
        value: V,
        sub_dir: str = "",
        input_ext: str = ".json",
        output_ext: str = ".json",
    ) -> CacheFilePaths | None:
        """Record key and value; returns the written paths, None on failure."""
        if not self.enabled:
            return None
        base = self._entry_dir(key, sub_dir)
        paths = CacheFilePaths(
            input_record_path=base / f"input{input_ext}",
            output_record_path=base / f"output{output_ext}",
        )
        try:
            serialized_key = self._serialize(key)
            serialized_value = self._serialize(value)
            await asyncio.to_thread(self._write, paths, serialized_key, serialized_value)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Error updating cache entry %s: %s", base, e)
            return None
        return paths

    @staticmethod
    def _write(paths: CacheFilePaths, key_text: str, value_text: str) -> None:
        paths.input_record_path.parent.mkdir(parents=True, exist_ok=True)
        paths.input_record_path.write_text(key_text, encoding="utf-8")
        paths.output_record_path.write_text(value_text, encoding="utf-8")

    async def invalidate(self, key: K, sub_dir: str = "") -> None:
        """Remove the entry for key. Missing entries are fine."""
        await asyncio.to_thread(shutil.rmtree, self._entry_dir(key, sub_dir), True)

    async def reset(self) -> None:
        """Remove the whole cache root. A missing root is fine."""
        await asyncio.to_thread(shutil.rmtree, self._cache_dir, True)
