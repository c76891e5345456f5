"""Workflow messages - the event envelope every node emits to its caller."""

from collections.abc import Callable
from enum import Enum
from typing import Annotated, Literal, Union

from langchain_core.messages import AIMessage, AIMessageChunk
from pydantic import BaseModel, ConfigDict, Field


class WorkflowMessageType(str, Enum):
    """Kinds of workflow messages."""

    LLM_RESPONSE_CHUNK = "llm_response_chunk"
    LLM_RESPONSE = "llm_response"
    MODIFIED_FILE = "modified_file"
    TOOL_CALL = "tool_call"
    USER_INTERACTION = "user_interaction"
    ERROR = "error"


class ToolCallStatus(str, Enum):
    """Lifecycle of a tool call. succeeded and failed are terminal."""

    GENERATING = "generating"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ModifiedFile(BaseModel):
    """File content that has been changed but not written to disk.

    rejected marks a change the user turned down; it must not be applied.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    content: str
    rejected: bool = False


class ToolCallEvent(BaseModel):
    """Progress of a single tool call."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str | None = None
    args: str | None = None  # JSON-encoded arguments
    status: ToolCallStatus


class DiagnosticTask(BaseModel):
    """A single IDE-reported problem in a file."""

    model_config = ConfigDict(frozen=True)

    uri: str
    task: str


class InteractionPrompt(BaseModel):
    """What the user is asked."""

    model_config = ConfigDict(frozen=True)

    yes_no: str | None = None
    choice: list[str] | None = None


class InteractionResponse(BaseModel):
    """What the user answered."""

    model_config = ConfigDict(frozen=True)

    yes_no: bool | None = None
    choice: int | None = None
    tasks: list[DiagnosticTask] | None = None

    def is_empty(self) -> bool:
        return self.yes_no is None and self.choice is None and self.tasks is None


class UserInteraction(BaseModel):
    """A question to the user, and later its answer."""

    model_config = ConfigDict(frozen=True)

    type: Literal["yesNo", "choice", "tasks", "modifiedFile"]
    system_message: InteractionPrompt = InteractionPrompt()
    response: InteractionResponse | None = None


class _BaseWorkflowMessage(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str


class LLMResponseChunkMessage(_BaseWorkflowMessage):
    type: Literal[WorkflowMessageType.LLM_RESPONSE_CHUNK] = WorkflowMessageType.LLM_RESPONSE_CHUNK
    data: AIMessageChunk


class LLMResponseMessage(_BaseWorkflowMessage):
    type: Literal[WorkflowMessageType.LLM_RESPONSE] = WorkflowMessageType.LLM_RESPONSE
    data: AIMessage


class ModifiedFileMessage(_BaseWorkflowMessage):
    type: Literal[WorkflowMessageType.MODIFIED_FILE] = WorkflowMessageType.MODIFIED_FILE
    data: ModifiedFile


class ToolCallMessage(_BaseWorkflowMessage):
    type: Literal[WorkflowMessageType.TOOL_CALL] = WorkflowMessageType.TOOL_CALL
    data: ToolCallEvent


class UserInteractionMessage(_BaseWorkflowMessage):
    type: Literal[WorkflowMessageType.USER_INTERACTION] = WorkflowMessageType.USER_INTERACTION
    data: UserInteraction


class ErrorMessage(_BaseWorkflowMessage):
    type: Literal[WorkflowMessageType.ERROR] = WorkflowMessageType.ERROR
    data: str


WorkflowMessage = Annotated[
    Union[
        LLMResponseChunkMessage,
        LLMResponseMessage,
        ModifiedFileMessage,
        ToolCallMessage,
        UserInteractionMessage,
        ErrorMessage,
    ],
    Field(discriminator="type"),
]

# Where a node sends its messages. Supplied by the owning workflow.
MessageSink = Callable[[WorkflowMessage], None]


def discard_messages(message: WorkflowMessage) -> None:
    """Sink for nodes used outside a workflow."""
