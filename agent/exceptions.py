"""Custom exceptions for the tool agent sandbox."""


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


class ToolError(Exception):
    """Base class for failures that are reported back to the model as a tool turn."""

    error_type = "ToolError"


class ToolNotFoundError(ToolError):
    """Raised when a requested tool does not exist."""

    error_type = "ToolNotFound"


class InvalidArgumentsError(ToolError):
    """Raised when tool arguments do not match the tool's parameter schema."""

    error_type = "InvalidArguments"

    def __init__(self, violations: list[str]):
        self.violations = list(violations)
        super().__init__(f"Invalid arguments: {'; '.join(self.violations)}")


class ForbiddenOperationError(ToolError):
    """Raised when the security policy rejects a tool call before it runs."""

    error_type = "ForbiddenOperation"


class PathTraversalError(ToolError):
    """Raised when a filesystem path resolves outside the workspace."""

    error_type = "PathTraversal"


class ExecutionTimeoutError(ToolError):
    """Raised when a tool exceeds its wall-clock timeout."""

    error_type = "ExecutionTimeout"


class ExecutionFailureError(ToolError):
    """Raised when a tool body fails (nonzero exit, runtime error, output limit)."""

    error_type = "ExecutionFailure"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ArgumentParseError(ToolError):
    """Raised when the model produced tool arguments that are not a JSON object."""

    error_type = "ArgumentParseFailure"


class ModelStreamError(Exception):
    """Raised when the model stream cannot be opened or breaks mid-stream."""

    error_type = "ModelStreamFailure"


class IterationBoundExceeded(Exception):
    """Raised when the loop is still calling tools after max_iterations cycles."""

    error_type = "IterationBoundExceeded"
