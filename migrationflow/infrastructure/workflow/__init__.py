"""Workflows - LangGraph graphs and the classes that drive them."""

from migrationflow.infrastructure.workflow.additional_info import AdditionalInfoWorkflow
from migrationflow.infrastructure.workflow.dto import (
    AdditionalInfoWorkflowInput,
    PreviousResponses,
    WorkflowInitOptions,
    WorkflowInput,
    WorkflowResponse,
)
from migrationflow.infrastructure.workflow.graph import (
    build_additional_info_graph,
    build_interactive_graph,
    compile_workflow_graph,
)
from migrationflow.infrastructure.workflow.interactive import InteractiveWorkflow
from migrationflow.infrastructure.workflow.relay import MessageRelay

__all__ = [
    "AdditionalInfoWorkflow",
    "AdditionalInfoWorkflowInput",
    "InteractiveWorkflow",
    "MessageRelay",
    "PreviousResponses",
    "WorkflowInitOptions",
    "WorkflowInput",
    "WorkflowResponse",
    "build_additional_info_graph",
    "build_interactive_graph",
    "compile_workflow_graph",
]
