"""Domain errors.

Only the fatal ones escape the workflow boundary; everything raised below the
orchestrator is caught, logged and turned into a degraded result.
"""


class MigrationFlowError(Exception):
    """Base class for all migrationflow errors."""


class WorkflowNotInitializedError(MigrationFlowError):
    """Workflow was run before init()."""


class WorkflowNotConnectedError(MigrationFlowError):
    """Model provider did not answer the health check."""


class ModelHealthCheckError(MigrationFlowError):
    """Health check could not reach the model at all."""


class InvalidUserResponseError(MigrationFlowError):
    """User interaction was resolved without a usable response."""


class ToolExecutionError(MigrationFlowError):
    """A tool failed; the message is shown to the model."""


class PathOutsideWorkspaceError(ToolExecutionError):
    """A tool path resolved outside the workspace root."""


class SolutionServerClientError(MigrationFlowError):
    """Solution server transport or protocol failure."""
