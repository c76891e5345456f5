"""Additional information workflow - acts on the leftovers of earlier fixes.

Earlier fix responses often end with notes about changes needed elsewhere
(``## Additional Information``). This workflow summarizes them, asks the
user whether to go on and, if so, lets a tool-equipped agent make the
changes.
"""

import time
import uuid
from collections.abc import Callable
from typing import Any

import structlog
from langgraph.graph import END

from migrationflow.application.agent.section_parser import heading_pattern, make_heading_matcher
from migrationflow.domain.entities.workflow_messages import (
    InteractionPrompt,
    MessageSink,
    UserInteraction,
    UserInteractionMessage,
)
from migrationflow.domain.entities.workflow_state import AdditionalInfoState
from migrationflow.domain.errors import (
    InvalidUserResponseError,
    WorkflowNotConnectedError,
    WorkflowNotInitializedError,
)
from migrationflow.domain.services.pending_interactions import PendingInteractions
from migrationflow.infrastructure.llm.health import ProbedModelProvider, model_health_check
from migrationflow.infrastructure.nodes.analysis_issue_fix import (
    ADDITIONAL_INFO,
    NO_CHANGE,
    REASONING,
    UPDATED_FILE,
    AnalysisIssueFix,
)
from migrationflow.infrastructure.tools.filesystem import FileSystemTools
from migrationflow.infrastructure.workflow.dto import (
    AdditionalInfoWorkflowInput,
    PreviousResponses,
    WorkflowInitOptions,
    WorkflowResponse,
)
from migrationflow.infrastructure.workflow.graph import build_additional_info_graph, compile_workflow_graph
from migrationflow.infrastructure.workflow.interactive import RunCollector
from migrationflow.infrastructure.workflow.relay import MessageRelay

log = structlog.get_logger()

CONTINUE_PROMPT = "We found more issues that we think we can fix. Do you want me to continue fixing those?"

ADDRESS_STEP = "address_additional_information"

match_response_heading = make_heading_matcher(
    {
        REASONING: heading_pattern("reasoning"),
        UPDATED_FILE: heading_pattern(r"updated\s*file"),
        ADDITIONAL_INFO: heading_pattern(r"additional\s*information"),
    }
)


def process_input(previous: PreviousResponses) -> dict[str, Any]:
    """Split previous fix responses into reasoning and additional information.

    Returns the state fields the summarizer reads, plus the combined
    ``previous_response`` text.
    """
    reasoning: list[str] = []
    additional_info: list[str] = []
    for response in previous.responses:
        section = None
        for line in response.split("\n"):
            label = match_response_heading(line)
            if label is not None:
                section = label
                continue
            if section == REASONING:
                reasoning.append(line)
            elif section == ADDITIONAL_INFO:
                additional_info.append(line)

    all_reasoning = "\n".join(reasoning).strip()
    all_additional_info = "\n".join(additional_info).strip()
    files = "\n".join(previous.files)
    return {
        "input_all_reasoning": all_reasoning,
        "input_all_additional_info": all_additional_info,
        "input_all_modified_files": list(previous.files),
        "previous_response": (
            f"## Summary of changes made\n\n{all_reasoning}\n\n"
            f"## Additional Information\n\n{all_additional_info}\n\n"
            f"## List of files changed\n\n{files}"
        ),
    }


class AdditionalInfoWorkflow:
    """Summarize leftover notes → yes/no gate → tool-augmented fixes."""

    def __init__(self) -> None:
        self._relay = MessageRelay()
        self._interactions = PendingInteractions()
        self._graph = None

    async def init(self, options: WorkflowInitOptions) -> None:
        capabilities = await model_health_check(options.model_provider)
        if not capabilities.connected:
            raise WorkflowNotConnectedError("Provided model doesn't seem to have connection")
        provider = ProbedModelProvider(options.model_provider, capabilities)

        fs_tools = FileSystemTools(
            options.workspace_dir,
            options.fs_cache,
            sink=self._relay.publish,
            interactions=self._interactions,
            solution_server=options.solution_server,
        )
        node = AnalysisIssueFix(
            provider,
            fs_tools.all(),
            options.fs_cache,
            options.workspace_dir,
            options.solution_server,
        )
        self._graph = compile_workflow_graph(build_additional_info_graph(node, self._relay, self.confirm_continue))

    def subscribe(self, listener: MessageSink) -> Callable[[], None]:
        return self._relay.subscribe(listener)

    async def resolve_user_interaction(self, message: UserInteractionMessage) -> None:
        self._interactions.resolve(message)

    async def confirm_continue(self, state: AdditionalInfoState) -> str:
        """Ask whether to act on the summary. Anything but yes ends the run."""
        summary = state.get("summarized_additional_info") or ""
        if not summary or NO_CHANGE in summary:
            return END

        interaction_id = f"res-{int(time.time() * 1000)}"
        self._interactions.create(interaction_id)
        self._relay.publish(
            UserInteractionMessage(
                id=interaction_id,
                data=UserInteraction(type="yesNo", system_message=InteractionPrompt(yes_no=CONTINUE_PROMPT)),
            )
        )
        try:
            message = await self._interactions.wait(interaction_id)
        except InvalidUserResponseError as e:
            log.warning("user_response_failed", interaction_id=interaction_id, error=str(e))
            return END
        if message.data.response is not None and message.data.response.yes_no:
            return ADDRESS_STEP
        return END

    async def run(self, request: AdditionalInfoWorkflowInput) -> WorkflowResponse:
        if self._graph is None:
            raise WorkflowNotInitializedError("Workflow must be initialized before it can be run")

        state: AdditionalInfoState = {
            **process_input(request.previous_responses),
            "migration_hint": request.migration_hint,
            "programming_language": request.programming_language,
            "messages": [],
        }
        config = {"configurable": {"thread_id": str(uuid.uuid4())}, "recursion_limit": 50}

        collector = RunCollector()
        unsubscribe = self._relay.subscribe(collector)
        try:
            await self._graph.ainvoke(state, config=config)
        finally:
            unsubscribe()
        return collector.response()
