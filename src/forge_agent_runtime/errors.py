"""Error taxonomy for agent sessions.

Every failure a session can end with is an AgentError subclass:

- Startup: CliNotFoundError, CliConnectionError
- Protocol: ProtocolError, JsonDecodeError, IncompleteSessionError
- Process exit: ProcessError
- Policy: ToolDeniedError, ToolPermissionTimeoutError, SessionCancelledError

Nothing here is retried; the orchestration layer decides what to do next.
"""

from __future__ import annotations

from collections.abc import Sequence


class AgentError(Exception):
    """Base class for all agent runtime errors."""

    pass


class CliNotFoundError(AgentError):
    """Raised when the agent executable cannot be located."""

    def __init__(self, searched_paths: Sequence[str]) -> None:
        self.searched_paths = list(searched_paths)
        super().__init__(f"Agent CLI not found. Searched paths: {', '.join(self.searched_paths)}")


class CliConnectionError(AgentError):
    """Raised when the agent process cannot be launched or its pipes fail."""

    pass


class ProtocolError(AgentError):
    """Raised when the agent output violates the message protocol."""

    def __init__(self, message: str, raw_data: str | None = None) -> None:
        self.raw_data = raw_data
        super().__init__(message)


class JsonDecodeError(ProtocolError):
    """Raised when a record cannot be decoded into a message."""

    def __init__(self, raw_data: str, cause: Exception | str) -> None:
        self.cause = cause
        super().__init__(f"Failed to decode agent output: {cause}", raw_data=raw_data)


class IncompleteSessionError(ProtocolError):
    """Raised when the agent exits cleanly without emitting a result."""

    pass


class ProcessError(AgentError):
    """Raised when the agent process exits with a non-zero code."""

    def __init__(self, exit_code: int, stderr: str = "") -> None:
        self.exit_code = exit_code
        self.stderr = stderr
        message = f"Agent CLI process exited with code {exit_code}"
        if stderr:
            message = f"{message}: {stderr}"
        super().__init__(message)


class ToolDeniedError(AgentError):
    """Raised when the host denies a tool use and asks to interrupt."""

    def __init__(self, tool_name: str, tool_use_id: str, deny_reason: str) -> None:
        self.tool_name = tool_name
        self.tool_use_id = tool_use_id
        self.deny_reason = deny_reason
        super().__init__(f"Tool '{tool_name}' was denied: {deny_reason}")


class ToolPermissionTimeoutError(AgentError):
    """Raised when the permission handler misses its deadline."""

    def __init__(self, tool_name: str, tool_use_id: str, timeout_ms: int) -> None:
        self.tool_name = tool_name
        self.tool_use_id = tool_use_id
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Tool permission handler for '{tool_name}' timed out after {timeout_ms}ms"
        )


class SessionCancelledError(AgentError):
    """Raised when the caller cancels a running session."""

    pass


class ScenarioNotFoundError(AgentError, ValueError):
    """Raised when a scenario id is not registered."""

    def __init__(self, scenario_id: str) -> None:
        self.scenario_id = scenario_id
        super().__init__(f"Scenario '{scenario_id}' not found")
