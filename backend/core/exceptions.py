"""Custom exceptions for the agent workflow engine."""


class EngineException(Exception):
    """Base exception for the agent workflow engine."""

    transient: bool = False

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(EngineException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404)


class ForbiddenError(EngineException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize ForbiddenError with 403 status code."""
        super().__init__(message, 403)


class ValidationError(EngineException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation failed"):
        """Initialize ValidationError with 422 status code."""
        super().__init__(message, 422)


class ConflictError(EngineException):
    """Resource conflict exception."""

    def __init__(self, message: str = "Resource conflict"):
        """Initialize ConflictError with 409 status code."""
        super().__init__(message, 409)


# ─── Workflow input / configuration ───────────────────────────

class InvalidInput(ValidationError):
    """Trigger payload does not satisfy the workflow's input schema."""

    def __init__(self, message: str = "Invalid input", errors: list[str] = None):
        super().__init__(message)
        self.errors = errors or []


class ConfigurationError(ValidationError):
    """A workflow or step definition is unusable as configured."""


class VariableNotFound(ConfigurationError):
    """A ${...} reference points at a path that is not in the context."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        message = f"Variable not found: ${{{path}}}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class ExpressionError(ConfigurationError):
    """A guard expression cannot be parsed or evaluated."""


class OutputVariableCollision(ConflictError):
    """A step tried to write an output variable that already exists."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Output variable '{name}' is already set in this execution")


class ApprovalAlreadyResolved(ConflictError):
    """An approval request has already left the pending state."""

    def __init__(self, approval_id: str, status: str):
        self.approval_id = approval_id
        self.status = status
        super().__init__(f"Approval {approval_id} is already {status}")


# ─── Tools ────────────────────────────────────────────────────

class ToolNotFound(NotFoundError):
    """No tool registered under the requested name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class InvalidToolInput(ValidationError):
    """Tool input does not match the tool's declared input schema."""

    def __init__(self, name: str, errors: list[str]):
        self.name = name
        self.errors = errors
        super().__init__(f"Invalid input for tool '{name}': {'; '.join(errors)}")


class ToolError(EngineException):
    """A tool handler failed."""

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message, 502)
        self.transient = transient


# ─── Runtime ──────────────────────────────────────────────────

class TransientError(EngineException):
    """A failure worth retrying (network, rate limit, upstream outage)."""

    transient = True

    def __init__(self, message: str = "Temporary failure"):
        super().__init__(message, 503)


class ModelAPIError(EngineException):
    """The language-model API returned an error or could not be reached."""

    def __init__(self, message: str, transient: bool = False, status: int = None):
        super().__init__(message, 502)
        self.transient = transient
        self.status = status


class StepTimeoutError(EngineException):
    """A step exceeded its timeout (including any retries)."""

    def __init__(self, step_name: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Step '{step_name}' timed out after {timeout_seconds}s", 504)
