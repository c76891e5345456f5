"""Analysis issue fix - per-file fix node and the router that drives it.

The router is a glorified for loop over (file, incidents) pairs: every tick
it folds the previous fix result, loads the next file for the fix node and,
once the queue is drained, aggregates everything for summarization.
"""

import asyncio
import difflib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_core.tools import BaseTool

from migrationflow.application.agent.section_parser import (
    between_outer_fences,
    collect_sections,
    heading_pattern,
    make_heading_matcher,
    scan_sections,
)
from migrationflow.domain.entities.incident import Incident, IncidentsByUri
from migrationflow.domain.entities.workflow_messages import (
    ErrorMessage,
    MessageSink,
    ModifiedFile,
    ModifiedFileMessage,
)
from migrationflow.domain.entities.workflow_state import AnalysisIssueFixState, FixResult
from migrationflow.domain.ports.model_provider import ModelProvider
from migrationflow.domain.ports.solution_server import BestHint, SolutionChangeSet, SolutionFile, SolutionServerPort
from migrationflow.infrastructure.cache.revision_cache import InMemoryCacheWithRevisions
from migrationflow.infrastructure.nodes.base import BaseNode
from migrationflow.shared.paths import normalize_uri, relative_to_workspace, resolve_in_workspace

logger = logging.getLogger(__name__)

NO_CHANGE = "NO-CHANGE"

FIX_STEP = "fix"
ROUTER_STEP = "router"
SUMMARIZE_STEP = "summarize"

REASONING = "reasoning"
UPDATED_FILE = "updated_file"
ADDITIONAL_INFO = "additional_info"

FIX_RESPONSE_HEADINGS = {
    REASONING: heading_pattern("reasoning"),
    UPDATED_FILE: heading_pattern(r"updated\s*file"),
    ADDITIONAL_INFO: heading_pattern(r"additional\s*information"),
}

match_fix_response_heading = make_heading_matcher(FIX_RESPONSE_HEADINGS)


@dataclass(frozen=True)
class FixResponse:
    """The three sections of a fix response. Missing sections are empty."""

    reasoning: str = ""
    updated_file: str = ""
    additional_info: str = ""


def parse_analysis_fix_response(content: str) -> FixResponse:
    """Parse a Reasoning / Updated File / Additional Information response."""
    parsed = collect_sections(
        scan_sections(content, match_fix_response_heading, fenced_labels=[UPDATED_FILE]),
        labels=FIX_RESPONSE_HEADINGS,
        post_processors={UPDATED_FILE: between_outer_fences},
    )
    return FixResponse(
        reasoning=parsed[REASONING],
        updated_file=parsed[UPDATED_FILE],
        additional_info=parsed[ADDITIONAL_INFO],
    )


def _empty_fix_output(uri: str | None) -> dict[str, Any]:
    return {
        "output_updated_file": None,
        "output_reasoning": None,
        "output_additional_info": None,
        "output_updated_file_uri": uri,
        "output_hints": [],
    }


def _fix_prompt(
    migration_hint: str,
    file_name: str,
    content: str,
    incidents: list[Incident],
    hints: list[BestHint],
) -> list:
    issues = "\n".join(f"* {incident.line_number}: {incident.message}" for incident in incidents)
    hints_section = ""
    if hints:
        hints_section = "\n## Hints\n" + "\n".join(f"* {hint.hint}" for hint in hints)
    system = SystemMessage(
        content=f"You are an experienced java developer, who specializes in migrating code from {migration_hint}"
    )
    human = HumanMessage(
        content=f"""I will give you a file for which I want to take one step towards migrating {migration_hint}.
I will provide you with static source code analysis information highlighting an issue which needs to be addressed.
Fix all the issues described. Other problems will be solved in subsequent steps so it is unnecessary to handle them now.
Before attempting to migrate the code from {migration_hint}, reason through what changes are required and why.

Pay attention to changes you make and impacts to external dependencies in the pom.xml as well as changes to imports we need to consider.
Remember when updating or adding annotations that the class must be imported.
As you make changes that impact the pom.xml or imports, be sure you explain what needs to be updated.
After you have shared your step by step thinking, provide a full output of the updated file.

# Input information

## Input File

File name: "{file_name}"
Source file contents:
```
{content}
```

## Issues
{issues}
{hints_section}

# Output Instructions
Structure your output in Markdown format such as:

## Reasoning
Write the step by step reasoning in this markdown section. If you are unsure of a step or reasoning, clearly state you are unsure and why.

## Updated File
// Write the updated file in this section. If the file should be removed, make the content of the updated file a comment explaining it should be removed.

## Additional Information (optional)

If you have any additional details or steps that need to be performed, put it here. Do not summarize any of the changes you already made in this section. Only mention any additional changes needed."""
    )
    return [system, human]


class AnalysisIssueFix(BaseNode):
    """Fixes static-analysis incidents one file at a time."""

    def __init__(
        self,
        model_provider: ModelProvider,
        tools: list[BaseTool],
        fs_cache: InMemoryCacheWithRevisions[str, str],
        workspace_dir: str | Path,
        solution_server: SolutionServerPort,
        sink: MessageSink | None = None,
    ) -> None:
        super().__init__("AnalysisIssueFix", model_provider, tools, sink)
        self._fs_cache = fs_cache
        self._workspace_dir = Path(normalize_uri(str(workspace_dir))).resolve()
        self._solution_server = solution_server

    def relative_path(self, uri: str) -> str:
        return relative_to_workspace(self._workspace_dir, uri)

    def _absolute_path(self, uri: str) -> Path:
        return resolve_in_workspace(self._workspace_dir, uri)

    # --- router -----------------------------------------------------------

    async def fix_analysis_issue_router(self, state: AnalysisIssueFixState) -> dict[str, Any]:
        """One tick: fold the last result, load the next file, finalize at the end."""
        queue = state.get("input_incidents_by_uris") or []
        current_idx = state.get("current_idx", 0)

        # Per-tick slots are reset; the reducer appends at most one result
        update: dict[str, Any] = {
            "output_all_responses": [],
            "input_file_uri": None,
            "input_file_content": None,
            "input_incidents": [],
            **_empty_fix_output(None),
        }

        folded = await self._fold_previous_result(state)
        if folded is not None:
            update["output_all_responses"] = [folded]

        if current_idx < len(queue):
            update.update(await self._load_next(queue[current_idx]))
            update["current_idx"] = current_idx + 1

        if current_idx >= len(queue) and state.get("input_all_modified_files") is None:
            results = [*(state.get("output_all_responses") or []), *update["output_all_responses"]]
            update.update(self._aggregate(results))
        return update

    @staticmethod
    def next_fix_step(state: AnalysisIssueFixState) -> str:
        """Route after a router tick: FIX_STEP, ROUTER_STEP or SUMMARIZE_STEP."""
        if state.get("input_file_uri") and state.get("input_file_content"):
            return FIX_STEP
        queue = state.get("input_incidents_by_uris") or []
        if state.get("current_idx", 0) < len(queue) or state.get("input_all_modified_files") is None:
            return ROUTER_STEP
        return SUMMARIZE_STEP

    async def _fold_previous_result(self, state: AnalysisIssueFixState) -> FixResult | None:
        updated_file = state.get("output_updated_file")
        uri = state.get("output_updated_file_uri")
        if not updated_file or not uri:
            return None

        self._fs_cache.set(str(self._absolute_path(uri)), updated_file)
        self.emit(
            ModifiedFileMessage(
                id=self.new_message_id("res-modified-file"),
                data=ModifiedFile(path=uri, content=updated_file),
            )
        )
        await self._record_solution(state, updated_file)
        return FixResult(
            uri=uri,
            reasoning=state.get("output_reasoning"),
            additional_info=state.get("output_additional_info"),
            updated_file=updated_file,
        )

    async def _record_solution(self, state: AnalysisIssueFixState, updated_file: str) -> None:
        uri = state.get("input_file_uri")
        before = state.get("input_file_content")
        reasoning = state.get("output_reasoning")
        incidents = state.get("input_incidents") or []
        if not (uri and before and reasoning and incidents):
            logger.info("Missing required fields for solution creation, skipping")
            return
        try:
            created = await self._solution_server.create_multiple_incidents(incidents)
            diff = "".join(
                difflib.unified_diff(
                    before.splitlines(keepends=True),
                    updated_file.splitlines(keepends=True),
                    fromfile=uri,
                    tofile=uri,
                )
            )
            await self._solution_server.create_solution(
                created.ids,
                SolutionChangeSet(
                    diff=diff,
                    before=[SolutionFile(uri=uri, content=before)],
                    after=[SolutionFile(uri=uri, content=updated_file)],
                ),
                reasoning,
                state.get("output_hints") or [],
            )
        except Exception as e:  # noqa: BLE001
            logger.error("Failed to create solution for %s: %s", uri, e)

    async def _load_next(self, entry: IncidentsByUri) -> dict[str, Any]:
        path = self._absolute_path(entry.uri)
        try:
            content = self._fs_cache.get(str(path))
            if content is None:
                content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Failed to read %s: %s", entry.uri, e)
            self.emit(
                ErrorMessage(
                    id=self.new_message_id("res-read-file"),
                    data=f"Failed to read {entry.uri} - {e}",
                )
            )
            return {}
        return {
            "input_file_uri": entry.uri,
            "input_file_content": content,
            "input_incidents": entry.incidents,
        }

    def _aggregate(self, results: list[FixResult]) -> dict[str, Any]:
        reasoning: list[str] = []
        additional_info: list[str] = []
        modified: list[str] = []
        for result in results:
            relative = self.relative_path(result.uri)
            modified.append(relative)
            if result.reasoning:
                reasoning.append(f"### {relative}\n{result.reasoning}")
            if result.additional_info:
                additional_info.append(f"### {relative}\n{result.additional_info}")
        return {
            "input_all_reasoning": "\n\n".join(reasoning),
            "input_all_additional_info": "\n\n".join(additional_info),
            "input_all_modified_files": modified,
        }

    # --- fix --------------------------------------------------------------

    async def _best_hints(self, incidents: list[Incident]) -> list[BestHint]:
        seen: set[str] = set()
        hints: list[BestHint] = []
        for incident in incidents:
            key = incident.violation_key
            if key is None or key in seen:
                continue
            seen.add(key)
            try:
                hint = await self._solution_server.get_best_hint(incident.ruleset_name, incident.violation_name)
            except Exception as e:  # noqa: BLE001
                logger.warning("Failed to get hint for %s: %s", key, e)
                continue
            if hint is not None:
                hints.append(hint)
        return hints

    async def fix_analysis_issue(self, state: AnalysisIssueFixState) -> dict[str, Any]:
        """Ask the model for a fix of the loaded file."""
        uri = state.get("input_file_uri")
        content = state.get("input_file_content")
        incidents = state.get("input_incidents") or []
        if not uri or not content or not incidents:
            return _empty_fix_output(uri)

        hints = await self._best_hints(incidents)
        messages = _fix_prompt(
            state.get("migration_hint", ""),
            Path(normalize_uri(uri)).name,
            content,
            incidents,
            hints,
        )
        response = await self.stream_or_invoke(messages, enable_tools=False, emit_response_chunks=True)
        if response is None:
            return _empty_fix_output(uri)

        parsed = parse_analysis_fix_response(self.ai_message_to_string(response))
        return {
            "output_reasoning": parsed.reasoning,
            "output_updated_file": parsed.updated_file,
            "output_additional_info": parsed.additional_info,
            "output_updated_file_uri": uri,
            "output_hints": [hint.hint_id for hint in hints],
        }

    # --- summaries --------------------------------------------------------

    async def summarize_additional_information(self, state: AnalysisIssueFixState) -> dict[str, Any]:
        """Condense the additional-info notes into the changes still needed."""
        additional_info = state.get("input_all_additional_info")
        if not additional_info:
            return {"summarized_additional_info": NO_CHANGE}

        migration_hint = state.get("migration_hint", "")
        reasoning = state.get("input_all_reasoning")
        modified = state.get("input_all_modified_files")
        summary_section = f"### Summary of changes made\n{reasoning}" if reasoning else ""
        files_section = "### List of modified files\n" + "\n".join(modified) if modified else ""
        messages = [
            SystemMessage(
                content=f"You are an experienced {state.get('programming_language', '')} programmer, "
                f"specializing in migrating source code to {migration_hint}. "
                "You are overlooking migration of a project."
            ),
            HumanMessage(
                content=f"""During the migration to {migration_hint}, we captured notes detailing changes made to existing files. \
The notes contain a summary of changes we already made and additional changes that may be required in other files elsewhere in the project. \
They also contain a list of files we changed.
Your task is to carefully analyze the notes, compare them with files that are changed, understand any additional changes needed to complete the migration and provide a concise summary *solely* of the additional changes required elsewhere in the project. \
**It is essential that your summary includes only the additional changes needed. Do not include changes already made.** \
Make sure you output all the details about the changes including any relevant code snippets and instructions.
**Do not omit any additional changes needed.**
If there are no additional changes needed to complete the migration, respond with text "{NO_CHANGE}". \
Here is the summary:
{summary_section}
### Additional information about changes
{additional_info}
{files_section}
"""
            ),
        ]
        # Thinking step: nothing is shown to the user
        response = await self.stream_or_invoke(messages, enable_tools=False, emit_response_chunks=False)
        return {"summarized_additional_info": self.ai_message_to_string(response)}

    async def summarize_history(self, state: AnalysisIssueFixState) -> dict[str, Any]:
        """Summarize the changes already made, as context for later agents."""
        reasoning = state.get("input_all_reasoning")
        if not reasoning:
            return {"summarized_history": ""}

        migration_hint = state.get("migration_hint", "")
        messages = [
            SystemMessage(
                content=f"You are an experienced {state.get('programming_language', '')} programmer, "
                f"specializing in migrating source code to {migration_hint}."
            ),
            HumanMessage(
                content=f"""During the migration to {migration_hint}, we captured the following notes detailing changes we made to the source code. \
These notes may also mention potential future changes. \
Your task is to carefully analyze these notes and provide a concise summary *solely* of the changes that have already been implemented. \
**It is essential that your summary includes only the modifications explicitly described as completed and accurately reflects the list of files already changed. \
Do not include any information about potential future changes.** \
This summary will serve as a record of completed modifications for other team members. \
Here are the notes:
### Reasoning for fixes made
{reasoning}"""
            ),
        ]
        response = await self.stream_or_invoke(messages, enable_tools=False, emit_response_chunks=False)
        return {"summarized_history": self.ai_message_to_string(response)}

    async def address_additional_information(self, state: dict[str, Any]) -> dict[str, Any]:
        """Tool-augmented turn acting on the summarized additional information."""
        seed: list[BaseMessage] = []
        if not state.get("messages"):
            seed = [
                SystemMessage(
                    content=f"You are an experienced {state.get('programming_language', '')} programmer, "
                    f"specializing in migrating source code to {state.get('migration_hint', '')}. "
                    "We updated a source code file to migrate the source code. "
                    "There may be more changes needed elsewhere in the project. "
                    "You are given notes detailing additional changes that need to happen. "
                    "Carefully analyze the changes and understand what files in the project need to be changed. "
                    "You have access to a set of tools to search for files, read a file and write to a file. "
                    "Work on one file at a time. "
                    "**Completely address changes in one file before moving onto to next file.** "
                    "When you're done addressing all the changes or there are no additional changes, "
                    "briefly summarize changes you made."
                ),
                HumanMessage(content=f"Here are the notes:\n{state.get('summarized_additional_info') or ''}"),
            ]
        response = await self.stream_or_invoke([*(state.get("messages") or []), *seed])
        if response is None:
            return {"messages": [*seed, AIMessage(content="DONE")]}
        return {"messages": [*seed, response]}
