"""LangGraph workflows - fix loop → summaries → diagnostics orchestration."""

from collections.abc import Awaitable, Callable
from typing import Any

from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, START, StateGraph

from migrationflow.domain.entities.workflow_state import AdditionalInfoState, InteractiveWorkflowState
from migrationflow.infrastructure.nodes.analysis_issue_fix import (
    FIX_STEP,
    NO_CHANGE,
    ROUTER_STEP,
    SUMMARIZE_STEP,
    AnalysisIssueFix,
)
from migrationflow.infrastructure.nodes.base import has_tool_calls
from migrationflow.infrastructure.nodes.diagnostics_issue_fix import (
    GENERAL_FIX,
    JAVA_DEPENDENCY,
    SUB_AGENTS,
    DiagnosticsIssueFix,
)
from migrationflow.infrastructure.workflow.relay import MessageRelay


def _tools_or(next_node: str, tools_node: str) -> Callable[[dict[str, Any]], str]:
    """Route: pending tool calls → tools_node, else → next_node."""

    def route(state: dict[str, Any]) -> str:
        return tools_node if has_tool_calls(state) else next_node

    return route


def prepare_diagnostics(state: InteractiveWorkflowState) -> dict[str, Any]:
    """Hand the analysis summaries over to the diagnostics orchestrator."""
    summarized = state.get("summarized_additional_info")
    if not state.get("enable_additional_information", True) or (summarized and NO_CHANGE in summarized):
        summarized = None
    return {
        "input_summarized_additional_info": summarized or None,
        "planner_input_background": state.get("summarized_history") or "",
        "planner_input_agents": list(SUB_AGENTS),
    }


def build_interactive_graph(
    analysis_node: AnalysisIssueFix,
    diagnostics_node: DiagnosticsIssueFix,
    relay: MessageRelay,
) -> StateGraph:
    """Build the interactive workflow graph; nodes report through relay."""
    analysis_node.set_sink(relay.publish)
    diagnostics_node.set_sink(relay.publish)

    builder = StateGraph(InteractiveWorkflowState)
    builder.add_node("fix_router", analysis_node.fix_analysis_issue_router)
    builder.add_node("fix", analysis_node.fix_analysis_issue)
    builder.add_node("summarize_additional_info", analysis_node.summarize_additional_information)
    builder.add_node("summarize_history", analysis_node.summarize_history)
    builder.add_node("prepare_diagnostics", prepare_diagnostics)
    builder.add_node("orchestrator", diagnostics_node.orchestrate_plan_and_execution)
    builder.add_node("planner", diagnostics_node.plan_fixes)
    builder.add_node("general_fix", diagnostics_node.fix_general_issues)
    builder.add_node("run_tools_general_fix", diagnostics_node.run_tools)
    builder.add_node("java_dependency", diagnostics_node.fix_java_dependency_issues)
    builder.add_node("run_tools_java_dependency", diagnostics_node.run_tools)

    builder.add_edge(START, "fix_router")
    builder.add_conditional_edges(
        "fix_router",
        AnalysisIssueFix.next_fix_step,
        path_map={FIX_STEP: "fix", ROUTER_STEP: "fix_router", SUMMARIZE_STEP: "summarize_additional_info"},
    )
    builder.add_edge("fix", "fix_router")
    builder.add_edge("summarize_additional_info", "summarize_history")
    builder.add_edge("summarize_history", "prepare_diagnostics")
    builder.add_edge("prepare_diagnostics", "orchestrator")
    builder.add_conditional_edges(
        "orchestrator",
        DiagnosticsIssueFix.next_orchestrator_step,
        path_map={
            "end": END,
            "planner": "planner",
            "orchestrator": "orchestrator",
            GENERAL_FIX: "general_fix",
            JAVA_DEPENDENCY: "java_dependency",
        },
    )
    builder.add_edge("planner", "orchestrator")
    builder.add_conditional_edges(
        "general_fix",
        _tools_or("orchestrator", "run_tools_general_fix"),
        path_map=["orchestrator", "run_tools_general_fix"],
    )
    builder.add_edge("run_tools_general_fix", "general_fix")
    builder.add_conditional_edges(
        "java_dependency",
        _tools_or("orchestrator", "run_tools_java_dependency"),
        path_map=["orchestrator", "run_tools_java_dependency"],
    )
    builder.add_edge("run_tools_java_dependency", "java_dependency")
    return builder


def build_additional_info_graph(
    analysis_node: AnalysisIssueFix,
    relay: MessageRelay,
    confirm: Callable[[AdditionalInfoState], Awaitable[str]],
) -> StateGraph:
    """Summarize → ask the user → address the notes with tools.

    confirm is the edge after summarizing; it returns the next node name or END.
    """
    analysis_node.set_sink(relay.publish)

    builder = StateGraph(AdditionalInfoState)
    builder.add_node("summarize", analysis_node.summarize_additional_information)
    builder.add_node("address_additional_information", analysis_node.address_additional_information)
    builder.add_node("run_tools", analysis_node.run_tools)

    builder.add_edge(START, "summarize")
    builder.add_conditional_edges("summarize", confirm, path_map=["address_additional_information", END])
    builder.add_conditional_edges(
        "address_additional_information",
        _tools_or(END, "run_tools"),
        path_map=["run_tools", END],
    )
    builder.add_edge("run_tools", "address_additional_information")
    return builder


def compile_workflow_graph(
    builder: StateGraph,
    *,
    checkpointer: BaseCheckpointSaver | None = None,
):
    """Compile graph with MemorySaver for checkpointing."""
    return builder.compile(checkpointer=checkpointer or MemorySaver())
