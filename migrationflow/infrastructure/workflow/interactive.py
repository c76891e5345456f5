"""Interactive workflow - the entry point an IDE drives.

Fixes analysis incidents file by file, summarizes what is left and then
works IDE diagnostics through the planner and its sub-agents, asking the
user whenever a decision is theirs.
"""

import json
import uuid
from collections.abc import AsyncIterator, Callable
from typing import Any

import structlog

from migrationflow.domain.entities.incident import Incident, IncidentsByUri
from migrationflow.domain.entities.workflow_messages import (
    ErrorMessage,
    MessageSink,
    ModifiedFile,
    ModifiedFileMessage,
    UserInteractionMessage,
    WorkflowMessage,
)
from migrationflow.domain.entities.workflow_state import InteractiveWorkflowState
from migrationflow.domain.errors import WorkflowNotConnectedError, WorkflowNotInitializedError
from migrationflow.domain.services.pending_interactions import PendingInteractions
from migrationflow.infrastructure.cache.response_cache import FileBasedResponseCache
from migrationflow.infrastructure.llm.health import ProbedModelProvider, model_health_check
from migrationflow.infrastructure.nodes.analysis_issue_fix import AnalysisIssueFix
from migrationflow.infrastructure.nodes.diagnostics_issue_fix import SUB_AGENTS, DiagnosticsIssueFix
from migrationflow.infrastructure.tools.filesystem import FileSystemTools
from migrationflow.infrastructure.tools.java_dependency import JavaDependencyTools
from migrationflow.infrastructure.workflow.dto import WorkflowInitOptions, WorkflowInput, WorkflowResponse
from migrationflow.infrastructure.workflow.graph import build_interactive_graph, compile_workflow_graph
from migrationflow.infrastructure.workflow.relay import MessageRelay

log = structlog.get_logger()


def group_incidents_by_uri(incidents: list[Incident]) -> list[IncidentsByUri]:
    """Group incidents per file, keeping the order files first appear in."""
    grouped: dict[str, list[Incident]] = {}
    for incident in incidents:
        grouped.setdefault(incident.uri, []).append(incident)
    return [IncidentsByUri(uri=uri, incidents=items) for uri, items in grouped.items()]


class RunCollector:
    """Collects what a single run produced, for the final response."""

    def __init__(self) -> None:
        self._modified: dict[str, ModifiedFile] = {}
        self.errors: list[str] = []

    def __call__(self, message: WorkflowMessage) -> None:
        if isinstance(message, ModifiedFileMessage):
            if message.data.rejected:
                self._modified.pop(message.data.path, None)
            else:
                self._modified[message.data.path] = message.data
        elif isinstance(message, ErrorMessage):
            self.errors.append(message.data)

    def response(self) -> WorkflowResponse:
        return WorkflowResponse(modified_files=list(self._modified.values()), errors=list(self.errors))


class InteractiveWorkflow:
    """Analysis fixes → summaries → diagnostics orchestration."""

    def __init__(self) -> None:
        self._relay = MessageRelay()
        self._interactions = PendingInteractions()
        self._graph = None
        self._recursion_limit = 500

    async def init(self, options: WorkflowInitOptions) -> None:
        """Check the model and build tools, nodes and graph."""
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
        tools_cache = options.tools_cache or FileBasedResponseCache(
            enabled=False, serialize=json.dumps, deserialize=json.loads, cache_dir=options.workspace_dir
        )
        dependency_tools = JavaDependencyTools(tools_cache)

        analysis_node = AnalysisIssueFix(
            provider,
            fs_tools.all(),
            options.fs_cache,
            options.workspace_dir,
            options.solution_server,
        )
        diagnostics_node = DiagnosticsIssueFix(
            provider,
            fs_tools.all(),
            dependency_tools.all(),
            options.workspace_dir,
            self._interactions,
        )
        self._graph = compile_workflow_graph(build_interactive_graph(analysis_node, diagnostics_node, self._relay))
        self._recursion_limit = options.recursion_limit
        log.info(
            "workflow_initialized",
            workspace=str(options.workspace_dir),
            supports_tools=capabilities.supports_tools,
            supports_tools_in_streaming=capabilities.supports_tools_in_streaming,
        )

    def subscribe(self, listener: MessageSink) -> Callable[[], None]:
        return self._relay.subscribe(listener)

    async def resolve_user_interaction(self, message: UserInteractionMessage) -> None:
        self._interactions.resolve(message)

    def _initial_state(self, request: WorkflowInput) -> InteractiveWorkflowState:
        return {
            "input_incidents_by_uris": group_incidents_by_uri(request.incidents),
            "current_idx": 0,
            "output_all_responses": [],
            "input_all_modified_files": None,
            "migration_hint": request.migration_hint,
            "programming_language": request.programming_language,
            "iteration_count": 0,
            "messages": [],
            "planner_input_agents": list(SUB_AGENTS),
            "enable_diagnostics_fixes": request.enable_diagnostics_fixes,
            "enable_additional_information": request.enable_additional_information,
        }

    async def run(self, request: WorkflowInput) -> WorkflowResponse:
        """Run the workflow to completion."""
        if self._graph is None:
            raise WorkflowNotInitializedError("Workflow must be initialized before it can be run")

        thread_id = request.thread_id or str(uuid.uuid4())
        config: dict[str, Any] = {
            "configurable": {"thread_id": thread_id},
            "recursion_limit": self._recursion_limit,
        }
        state = self._initial_state(request)

        collector = RunCollector()
        unsubscribe = self._relay.subscribe(collector)
        log.info("workflow_run_started", thread_id=thread_id, files=len(state["input_incidents_by_uris"]))
        try:
            await self._graph.ainvoke(state, config=config)
        finally:
            unsubscribe()
        response = collector.response()
        log.info(
            "workflow_run_finished",
            thread_id=thread_id,
            modified_files=len(response.modified_files),
            errors=len(response.errors),
        )
        return response

    async def stream(self, request: WorkflowInput) -> AsyncIterator[WorkflowMessage]:
        """Run the workflow, yielding its messages as they are published."""
        if self._graph is None:
            raise WorkflowNotInitializedError("Workflow must be initialized before it can be run")
        async for message in self._relay.stream(self.run(request)):
            yield message
