"""Filesystem tools - search, read and write files inside the workspace.

Paths from the model are workspace-relative. Writes never touch the disk:
they go to the revision cache and are offered to the user for review.
"""

import asyncio
import logging
import os
import re
import time
from pathlib import Path

from langchain_core.tools import BaseTool, StructuredTool
from pydantic import BaseModel, Field

from migrationflow.domain.entities.workflow_messages import (
    InteractionPrompt,
    MessageSink,
    ModifiedFile,
    ModifiedFileMessage,
    UserInteraction,
    UserInteractionMessage,
    discard_messages,
)
from migrationflow.domain.errors import InvalidUserResponseError, PathOutsideWorkspaceError, ToolExecutionError
from migrationflow.domain.ports.solution_server import SolutionServerPort
from migrationflow.domain.services.pending_interactions import PendingInteractions
from migrationflow.infrastructure.cache.revision_cache import InMemoryCacheWithRevisions
from migrationflow.shared.paths import is_within, normalize_uri, resolve_in_workspace

logger = logging.getLogger(__name__)

NO_MATCHES = "There are no files matching this pattern."
WRITE_OK = "File wrote successfully!"


class SearchFilesArgs(BaseModel):
    pattern: str = Field(description="File name regex pattern to match")


class ReadFileArgs(BaseModel):
    path: str = Field(description="Relative path to the file")


class WriteFileArgs(BaseModel):
    path: str = Field(description="Relative path to the file")
    content: str = Field(description="Content to write")


def glob_to_regex(pattern: str) -> str:
    """Loose glob: ``*`` not preceded by ``.`` means ``.*``; ``?`` means ``.``."""
    return re.sub(r"(?<!\.)\*", ".*", pattern).replace("?", ".")


class FileSystemTools:
    """Tools the model uses to look at and change the workspace."""

    def __init__(
        self,
        workspace_dir: str | Path,
        fs_cache: InMemoryCacheWithRevisions[str, str],
        sink: MessageSink | None = None,
        interactions: PendingInteractions | None = None,
        solution_server: SolutionServerPort | None = None,
    ) -> None:
        self._workspace_dir = Path(normalize_uri(str(workspace_dir))).resolve()
        self._fs_cache = fs_cache
        self._sink = sink or discard_messages
        self._interactions = interactions
        self._solution_server = solution_server

    def set_sink(self, sink: MessageSink) -> None:
        self._sink = sink

    def all(self) -> list[BaseTool]:
        return [
            StructuredTool.from_function(
                coroutine=self.search_files,
                name="searchFiles",
                description="Returns files matching given filepath pattern",
                args_schema=SearchFilesArgs,
            ),
            StructuredTool.from_function(
                coroutine=self.read_file,
                name="readFile",
                description="Reads contents of a file",
                args_schema=ReadFileArgs,
            ),
            StructuredTool.from_function(
                coroutine=self.write_file,
                name="writeFile",
                description="Writes content to a file, creates file and subdirectories if they don't exist",
                args_schema=WriteFileArgs,
            ),
        ]

    def _resolve(self, path: str) -> Path:
        resolved = resolve_in_workspace(self._workspace_dir, path)
        if not is_within(self._workspace_dir, resolved):
            raise PathOutsideWorkspaceError(f"Path {path} is outside the workspace")
        return resolved

    async def search_files(self, pattern: str) -> str:
        try:
            regex = re.compile(glob_to_regex(pattern))
        except re.error as e:
            raise ToolExecutionError(f"Failed to search for files - invalid pattern {pattern}: {e}") from e
        try:
            matches = await asyncio.to_thread(self._walk_matching, regex, pattern)
        except OSError as e:
            raise ToolExecutionError(f"Failed to search for files - {e}") from e
        if not matches:
            return NO_MATCHES
        return "\n".join(sorted(matches))

    def _walk_matching(self, regex: re.Pattern[str], pattern: str) -> list[str]:
        matches = []
        for dirpath, _, filenames in os.walk(self._workspace_dir):
            for name in filenames:
                relative = (Path(dirpath) / name).relative_to(self._workspace_dir).as_posix()
                if regex.search(name) or regex.search(relative) or pattern == relative:
                    matches.append(relative)
        return matches

    async def read_file(self, path: str) -> str:
        absolute = self._resolve(path)
        cached = self._fs_cache.get(str(absolute))
        if cached is not None:
            return cached
        if not absolute.is_file():
            return f"File at path {path} does not exist - ensure the path is correct."
        try:
            return await asyncio.to_thread(absolute.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Failed to read file %s: %s", path, e)
            raise ToolExecutionError(f"Failed to read file due to error - {e}") from e

    async def write_file(self, path: str, content: str) -> str:
        absolute = self._resolve(path)
        key = str(absolute)
        self._fs_cache.set(key, content)
        self._sink(
            ModifiedFileMessage(
                id=f"{key}-toolCall",
                data=ModifiedFile(path=key, content=content),
            )
        )
        if self._interactions is None:
            return WRITE_OK

        interaction_id = f"req-modified-file-{int(time.time() * 1000)}"
        self._interactions.create(interaction_id)
        self._sink(
            UserInteractionMessage(
                id=interaction_id,
                data=UserInteraction(
                    type="modifiedFile",
                    system_message=InteractionPrompt(yes_no=f"Do you want to apply the changes to {path}?"),
                ),
            )
        )
        try:
            message = await self._interactions.wait(interaction_id)
            accepted = bool(message.data.response and message.data.response.yes_no)
        except InvalidUserResponseError as e:
            logger.warning("No usable answer for change to %s, treating as rejected: %s", path, e)
            accepted = False

        if accepted:
            if self._solution_server is not None:
                await self._solution_server.accept_file(key, content)
            return WRITE_OK

        self._fs_cache.invalidate(key)
        previous = self._fs_cache.get(key)
        if previous is not None:
            # An earlier pending revision is in effect again
            outcome = ModifiedFile(path=key, content=previous)
        else:
            outcome = ModifiedFile(path=key, content=content, rejected=True)
        self._sink(ModifiedFileMessage(id=f"{key}-rejected", data=outcome))
        if self._solution_server is not None:
            await self._solution_server.reject_file(key)
        return f"The user rejected the change to {path}."
