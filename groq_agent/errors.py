"""Exception types shared across the agent, transport and tools."""

from typing import Sequence


class AgentError(Exception):
    """Base error for all agent operations."""
    pass


class TransportError(AgentError):
    """Raised when every model in the fallback chain failed."""

    def __init__(self, message: str, models: Sequence[str] = ()):
        self.models = list(models)
        super().__init__(message)


class ToolError(AgentError):
    """Error raised inside a tool; surfaces as a failed ToolResult."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        self.message = message
        super().__init__(message)


class ShellBlockedError(ToolError):
    """Raised when a shell command is refused by the safety guard."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__("bash", f"Blocked: {reason}")


class ShellTimeoutError(ToolError):

    def __init__(self, timeout: int):
        self.timeout = timeout
        super().__init__("bash", f"Command timed out after {timeout}s")


class WebOpsError(ToolError):

    def __init__(self, tool_name: str, message: str):
        super().__init__(tool_name, message)


class ConfirmationRejected(ToolError):
    """The user declined an operation that needed approval."""

    def __init__(self, tool_name: str, operation: str):
        self.operation = operation
        super().__init__(tool_name, f"{operation} cancelled by user")


class SessionError(AgentError):
    pass
