"""Diagnostics issue fix - planner, orchestrator and the sub-agents it delegates to."""

import logging
import time
from pathlib import Path
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, RemoveMessage, SystemMessage
from langchain_core.tools import BaseTool

from migrationflow.application.agent.section_parser import (
    heading_pattern,
    join_stripped,
    make_heading_matcher,
    scan_sections,
)
from migrationflow.domain.entities.workflow_messages import (
    InteractionResponse,
    MessageSink,
    UserInteraction,
    UserInteractionMessage,
)
from migrationflow.domain.entities.workflow_state import (
    BaseMetaState,
    DelegationBlock,
    DiagnosticsState,
    TaskGroup,
)
from migrationflow.domain.errors import InvalidUserResponseError
from migrationflow.domain.ports.model_provider import ModelProvider
from migrationflow.domain.services.pending_interactions import PendingInteractions
from migrationflow.infrastructure.nodes.base import BaseNode
from migrationflow.shared.paths import normalize_uri, relative_to_workspace

logger = logging.getLogger(__name__)

GENERAL_FIX = "generalFix"
JAVA_DEPENDENCY = "javaDependency"

SUB_AGENTS: dict[str, str] = {
    GENERAL_FIX: "Fixes general issues, use when no other specialized agent is available",
    JAVA_DEPENDENCY: "Adds, removes or updates dependencies in a pom.xml file",
}

NAME = "name"
INSTRUCTIONS = "instructions"

match_planner_heading = make_heading_matcher(
    {
        NAME: heading_pattern("name"),
        INSTRUCTIONS: heading_pattern("instructions"),
    }
)

# Sub-agents seeded with the file tools only
FILE_TOOL_SELECTORS = [".*File.*"]


def get_cache_key(state: BaseMetaState) -> str:
    """LLM cache sub directory for the current run iteration."""
    return f"iteration-{state.get('iteration_count', 0)}"


def parse_planner_response(content: str) -> list[DelegationBlock]:
    """Parse ``* Name`` / ``* Instructions`` delegation blocks in order.

    Instructions attach to the most recent name; instructions seen before
    any name are dropped.
    """
    blocks: list[DelegationBlock] = []
    for section in scan_sections(content, match_planner_heading, strip_lines=True):
        text = join_stripped(section.lines)
        if section.label == NAME:
            blocks.append(DelegationBlock(name=text))
        elif blocks:
            blocks[-1] = DelegationBlock(name=blocks[-1].name, instructions=text)
    return blocks


def group_tasks(response: InteractionResponse) -> list[TaskGroup]:
    """Group tasks by uri; tasks and uris are sorted."""
    grouped: dict[str, list[str]] = {}
    for task in response.tasks or []:
        grouped.setdefault(task.uri, []).append(task.task)
    return [TaskGroup(uri=uri, tasks=sorted(grouped[uri])) for uri in sorted(grouped)]


class DiagnosticsIssueFix(BaseNode):
    """Plans fixes for IDE diagnostics and drives the sub-agents.

    The orchestrator is the hub: it parks waiting for tasks, hands each task
    to the planner and dispatches the planner's delegation blocks one at a
    time to the matching sub-agent.
    """

    def __init__(
        self,
        model_provider: ModelProvider,
        fs_tools: list[BaseTool],
        dependency_tools: list[BaseTool],
        workspace_dir: str | Path,
        interactions: PendingInteractions,
        sink: MessageSink | None = None,
    ) -> None:
        super().__init__("DiagnosticsIssueFix", model_provider, [*fs_tools, *dependency_tools], sink)
        self._workspace_dir = Path(normalize_uri(str(workspace_dir))).resolve()
        self._interactions = interactions

    async def orchestrate_plan_and_execution(self, state: DiagnosticsState) -> dict[str, Any]:
        """One orchestrator tick. See the class docstring for the cycle."""
        update: dict[str, Any] = {"should_end": False, "planner_input_tasks": None}

        if state.get("current_agent"):
            # The finished agent's conversation must not leak into the next one
            update["messages"] = [RemoveMessage(id=m.id) for m in state.get("messages") or [] if m.id]
            update["input_instructions_for_general_fix"] = None
            update["current_agent"] = None
            update["current_task"] = None

        pending_tasks = list(state.get("input_diagnostics_tasks") or [])
        nominated = list(state.get("planner_output_nominated_agents") or [])
        summarized_info = state.get("input_summarized_additional_info")

        if not pending_tasks and not summarized_info and not nominated:
            update["should_end"] = True
            if not state.get("enable_diagnostics_fixes"):
                return update
            update.update(await self._wait_for_tasks())
            return update

        if nominated:
            block = nominated.pop()
            update["planner_output_nominated_agents"] = nominated
            if block.name in SUB_AGENTS:
                current_task = state.get("current_task")
                update["input_instructions_for_general_fix"] = block.instructions
                update["input_uris_for_general_fix"] = (
                    [relative_to_workspace(self._workspace_dir, current_task.uri)]
                    if current_task is not None and current_task.uri
                    else None
                )
                update["current_agent"] = block.name
            else:
                logger.warning("Planner delegated to unknown agent %s", block.name)
                update["current_agent"] = None
            return update

        # Additional information from the analysis fixes is planned first
        if summarized_info:
            task = TaskGroup(uri="", tasks=[summarized_info])
            update["input_summarized_additional_info"] = None
        else:
            task = pending_tasks.pop()
            update["input_diagnostics_tasks"] = pending_tasks
        update["current_task"] = task
        update["planner_input_tasks"] = task
        return update

    async def _wait_for_tasks(self) -> dict[str, Any]:
        interaction_id = f"req-tasks-{int(time.time() * 1000)}"
        self._interactions.create(interaction_id)
        self.emit(
            UserInteractionMessage(
                id=interaction_id,
                data=UserInteraction(type="tasks"),
            )
        )
        try:
            message = await self._interactions.wait(interaction_id)
        except InvalidUserResponseError as e:
            logger.error("Failed to wait for user response - %s", e)
            return {}

        response = message.data.response
        if response is None or not (response.tasks and response.yes_no):
            logger.info("No more diagnostics tasks, ending")
            return {}
        tasks = group_tasks(response)
        return {"should_end": not tasks, "input_diagnostics_tasks": tasks}

    @staticmethod
    def next_orchestrator_step(state: DiagnosticsState) -> str:
        """Route after an orchestrator tick."""
        if state.get("should_end"):
            return "end"
        agent = state.get("current_agent")
        if agent:
            return agent
        if state.get("planner_input_tasks") is not None:
            return "planner"
        return "orchestrator"

    async def plan_fixes(self, state: DiagnosticsState) -> dict[str, Any]:
        """Ask the model which sub-agent should handle which issues."""
        iteration_count = state.get("iteration_count", 0)
        task = state.get("planner_input_tasks")
        if task is None or not task.tasks:
            return {"planner_output_nominated_agents": [], "iteration_count": iteration_count}

        migration_hint = state.get("migration_hint", "")
        agents = state.get("planner_input_agents") or list(SUB_AGENTS)
        agent_descriptions = "".join(f"\n-\tName: {a}\tDescription: {SUB_AGENTS.get(a, '')}" for a in agents)
        file_section = (
            f"** File in which issues were found: {task.uri}.\n"
            "Make sure your instructions are specific to fixing issues in this file."
            if task.uri
            else ""
        )
        issues = "\n - ".join(task.tasks)

        messages = [
            SystemMessage(
                content=f"You are an experienced architect overlooking migration of a "
                f"{state.get('programming_language', '')} application from {migration_hint}. "
                "Your expertise lies in efficiently delegating tasks to the most appropriate specialist "
                "to ensure optimal problem resolution."
            ),
            HumanMessage(
                content=f"""You have a roster of specialized agents at your disposal, each with unique capabilities and areas of focus. \
For context, you are also given background information on changes we made so far to migrate the application.

**Here is the list of available agents, along with their descriptions:**
{agent_descriptions}

{file_section}

**Here is the list of issues that need to be solved:**
- {issues}

**Previous context about migration**
{state.get("planner_input_background", "")}

Your primary task is to carefully analyze **each individual issue** in the list. \
For each issue, you must determine the most suitable specialized agent to address it. \
You should group related issues that can be efficiently solved by the same agent, ensuring the **most specific agent** is chosen for the grouped issues.
If an issue, or a group of issues, requires a different specialist, you **must** create a new delegation block for that specialist.
Your instructions to each agent must be specific, clear, and tailored to their expertise, detailing how they should approach and solve the assigned problems. \
**Make sure** your instructions take into account previous changes we made for migrating the project and align with the overall migration effort. \
Consider the nuances of each issue and match it precisely with the described capabilities of the agents. \
If no specialized agent is a perfect fit for an issue or a group of issues, direct it to the generalist agent with comprehensive instructions.
**Make sure all issues from the list are addressed.** You will likely need to delegate to more than one agent to address all issues effectively.

Your response **must** consist of one or more distinct blocks, each delegating tasks to a specific agent. Each block **must** follow this exact format:
* Name
<agent_name_here_on_newline>
* Instructions
<detailed_instructions_here_on_newline>

**Example of expected output structure (if multiple agents are chosen to address different issues):**
* Name
<Agent_A_Name>
* Instructions
Instructions for Agent A to solve Issue 1, Issue 2, etc. (mention specific issues)

* Name
<Agent_B_Name>
* Instructions
Instructions for Agent B to solve Issue 3, Issue 4, etc. (mention specific issues)
"""
            ),
        ]
        response = await self.stream_or_invoke(
            messages,
            enable_tools=False,
            emit_response_chunks=False,
            options={"cache_key": get_cache_key(state)},
        )
        if response is None:
            return {"planner_output_nominated_agents": [], "iteration_count": iteration_count}
        return {
            "planner_output_nominated_agents": parse_planner_response(self.ai_message_to_string(response)),
            "iteration_count": iteration_count + 1,
        }

    async def fix_general_issues(self, state: DiagnosticsState) -> dict[str, Any]:
        """Tool-augmented agent for changes no specialist covers."""
        seed: list[BaseMessage] = []
        if not state.get("messages"):
            uris = state.get("input_uris_for_general_fix")
            files_section = (
                "The above issues were found in following files:\n" + "\n".join(uris) if uris else ""
            )
            seed = [
                SystemMessage(
                    content=f"You are an experienced {state.get('programming_language', '')} programmer, "
                    f"specializing in migrating source code from {state.get('migration_hint', '')}. "
                    "We updated a source code file to migrate the source code. "
                    "There may be more changes needed elsewhere in the project. "
                    "You are given notes detailing additional changes that need to happen. "
                    "Carefully analyze the changes and understand what files in the project need to be changed. "
                    "The notes may contain details about changes already made. "
                    "Please do not act on any of the changes already made. "
                    "Assume they are correct and only focus on any additional changes needed. "
                    "You have access to a set of tools to search for files, read a file and write to a file. "
                    "Work on one file at a time. "
                    "**Completely address changes in one file before moving onto to next file.** "
                    "Explain your rationale while you make changes to files. "
                    "When you're done addressing all the changes or there are no additional changes, "
                    "briefly summarize changes you made."
                ),
                HumanMessage(
                    content=f"Here are the notes:\n{state.get('input_instructions_for_general_fix') or ''}\n{files_section}"
                ),
            ]
        return await self._agent_turn(state, seed, FILE_TOOL_SELECTORS)

    async def fix_java_dependency_issues(self, state: DiagnosticsState) -> dict[str, Any]:
        """Tool-augmented agent that edits pom.xml dependencies."""
        # Maven only for now; gradle builds go to the general agent
        seed: list[BaseMessage] = []
        if not state.get("messages"):
            uris = state.get("input_uris_for_general_fix")
            files_section = (
                "* Files in which these issues were found:\n" + "\n".join(uris) if uris else ""
            )
            seed = [
                SystemMessage(
                    content="You are an expert Java developer specializing in dependency management "
                    f"and migrating source code from / to {state.get('migration_hint', '')}."
                ),
                HumanMessage(
                    content=f"""Your task is to resolve compilation or runtime errors in a Java project by identifying and adding missing dependencies to the project's pom.xml file.

**Your Goal:**
Successfully add necessary dependencies or modify existing dependencies to resolve identified issues, ensuring the project compiles and runs correctly.

**Information Provided:**
You will be given information about the issues found, which may include compilation errors, stack traces from runtime errors, or descriptions of missing classes/methods. \
Determine whether the given issue can be fixed by adding, modifying, updating or deleting one or more dependency. \
You have access to a set of tools to search for files, read a file and write to a file. \
You also have access to specific tools that will help you determine which dependency to add. \
If the given issue cannot be solved by adding, modifying, updating or deleting dependencies, do not take any action. \
Explain your rationale as you make changes.

{files_section}

Here are the issues:
{state.get("input_instructions_for_general_fix") or ""}
"""
                ),
            ]
        return await self._agent_turn(state, seed, None)

    async def _agent_turn(
        self,
        state: DiagnosticsState,
        seed: list[BaseMessage],
        tools_selectors: list[str] | None,
    ) -> dict[str, Any]:
        iteration_count = state.get("iteration_count", 0)
        chat = [*(state.get("messages") or []), *seed]
        response = await self.stream_or_invoke(
            chat,
            tools_selectors=tools_selectors,
            options={"cache_key": get_cache_key(state)},
        )
        if response is None:
            return {"messages": [*seed, AIMessage(content="DONE")], "iteration_count": iteration_count}
        # add_messages turns a streamed chunk into a plain AIMessage
        return {"messages": [*seed, response], "iteration_count": iteration_count + 1}
