"""Workflow DTOs."""

from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, Field

from migrationflow.domain.entities.incident import Incident
from migrationflow.domain.entities.workflow_messages import ModifiedFile
from migrationflow.domain.ports.model_provider import ModelProvider
from migrationflow.domain.ports.solution_server import SolutionServerPort
from migrationflow.infrastructure.cache.response_cache import FileBasedResponseCache
from migrationflow.infrastructure.cache.revision_cache import InMemoryCacheWithRevisions


@dataclass
class WorkflowInitOptions:
    """Collaborators a workflow is built from."""

    model_provider: ModelProvider
    workspace_dir: Path
    solution_server: SolutionServerPort
    fs_cache: InMemoryCacheWithRevisions[str, str] = field(default_factory=InMemoryCacheWithRevisions)
    tools_cache: FileBasedResponseCache | None = None  # Maven lookups; disabled when None
    recursion_limit: int = 500


class WorkflowInput(BaseModel):
    """One run of the interactive workflow."""

    incidents: list[Incident] = Field(default_factory=list)
    migration_hint: str = "JavaEE to Quarkus"
    programming_language: str = "java"
    enable_additional_information: bool = True
    enable_diagnostics_fixes: bool = False
    thread_id: str | None = Field(None, max_length=100)  # checkpointer thread; generated if omitted


class PreviousResponses(BaseModel):
    """Fix responses from an earlier run, as replayed into the additional-info workflow."""

    files: list[str] = Field(default_factory=list)
    responses: list[str] = Field(default_factory=list)


class AdditionalInfoWorkflowInput(BaseModel):
    previous_responses: PreviousResponses = Field(default_factory=PreviousResponses)
    migration_hint: str = "JavaEE to Quarkus"
    programming_language: str = "java"


class WorkflowResponse(BaseModel):
    """Files the run modified (not yet written to disk) and errors it reported."""

    modified_files: list[ModifiedFile] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
