"""Workflow state schemas for LangGraph."""

import operator
from dataclasses import dataclass, field
from typing import Annotated, TypedDict

from langchain_core.messages import AnyMessage
from langgraph.graph.message import add_messages

from migrationflow.domain.entities.incident import Incident, IncidentsByUri


@dataclass(frozen=True)
class FixResult:
    """Outcome of one per-file fix, folded by the router."""

    uri: str
    reasoning: str | None = None
    additional_info: str | None = None
    updated_file: str | None = None


@dataclass(frozen=True)
class TaskGroup:
    """Diagnostic tasks for one file. uri is empty for free-form notes."""

    uri: str
    tasks: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class DelegationBlock:
    """Planner output: which agent gets which instructions."""

    name: str
    instructions: str = ""


class BaseMetaState(TypedDict, total=False):
    migration_hint: str
    programming_language: str
    iteration_count: int


class AnalysisIssueFixState(BaseMetaState, total=False):
    """Router and per-file fix node state."""

    # Work queue
    input_incidents_by_uris: list[IncidentsByUri]
    current_idx: int  # only ever increases

    # Task currently loaded for the fix node
    input_file_uri: str | None
    input_file_content: str | None
    input_incidents: list[Incident]

    # Fix node output for that task
    output_updated_file: str | None
    output_updated_file_uri: str | None
    output_reasoning: str | None
    output_additional_info: str | None
    output_hints: list[int]

    # Each router tick appends at most one result
    output_all_responses: Annotated[list[FixResult], operator.add]

    # Aggregates, set once the queue is drained
    input_all_reasoning: str | None
    input_all_additional_info: str | None
    input_all_modified_files: list[str] | None

    summarized_additional_info: str | None
    summarized_history: str | None


class DiagnosticsState(BaseMetaState, total=False):
    """Planner, orchestrator and sub-agent state."""

    messages: Annotated[list[AnyMessage], add_messages]

    planner_input_background: str
    planner_input_tasks: TaskGroup | None
    planner_input_agents: list[str]
    planner_output_nominated_agents: list[DelegationBlock] | None

    input_instructions_for_general_fix: str | None
    input_uris_for_general_fix: list[str] | None

    input_summarized_additional_info: str | None
    input_diagnostics_tasks: list[TaskGroup] | None
    current_task: TaskGroup | None
    current_agent: str | None
    should_end: bool
    enable_diagnostics_fixes: bool


class InteractiveWorkflowState(AnalysisIssueFixState, DiagnosticsState, total=False):
    """Everything the interactive workflow threads through its graph."""

    enable_additional_information: bool


class AdditionalInfoState(BaseMetaState, total=False):
    """State of the standalone additional-information workflow."""

    messages: Annotated[list[AnyMessage], add_messages]
    previous_response: str
    input_all_additional_info: str | None
    input_all_reasoning: str | None
    input_all_modified_files: list[str] | None
    summarized_additional_info: str | None
