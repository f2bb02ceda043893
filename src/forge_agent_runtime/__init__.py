"""Forge agent runtime.

Drives an external coding-agent CLI as a streaming session: launches
the process, decodes its stream-json output into typed messages and
routes every tool use through a host permission handler.

Usage:
    from forge_agent_runtime import AgentClient, PermissionAllow

    async def approve(context, cancel_event):
        return PermissionAllow()

    client = AgentClient()
    async with client.start_session("Fix the build", permission_handler=approve) as session:
        async for message in session:
            print(message)
"""

from .client import AgentClient, create_agent_client
from .config import RuntimeSettings, configure_logging
from .errors import (
    AgentError,
    CliConnectionError,
    CliNotFoundError,
    IncompleteSessionError,
    JsonDecodeError,
    ProcessError,
    ProtocolError,
    ScenarioNotFoundError,
    SessionCancelledError,
    ToolDeniedError,
    ToolPermissionTimeoutError,
)
from .options import AgentOptions, InputFormat, McpServerConfig, PermissionMode
from .protocol import (
    AssistantMessage,
    ContentBlock,
    McpServerStatus,
    Message,
    ResultMessage,
    StreamEvent,
    SystemMessage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
    UserMessage,
    decode_line,
    decode_record,
)
from .protocols import (
    PermissionAllow,
    PermissionDeny,
    PermissionHandler,
    PermissionMediator,
    PermissionOutcome,
    PermissionResult,
    ToolPermissionContext,
)
from .scenarios import Scenario, ScenarioRegistry, builtin_scenarios
from .session import AgentSession, SessionState
from .transport import AgentTransport, ProcessTransport, ScriptedTransport, find_cli

__version__ = "0.1.0"

__all__ = [
    # Client
    "AgentClient",
    "AgentSession",
    "SessionState",
    "create_agent_client",
    # Configuration
    "AgentOptions",
    "InputFormat",
    "McpServerConfig",
    "PermissionMode",
    "RuntimeSettings",
    "configure_logging",
    # Messages
    "Message",
    "AssistantMessage",
    "UserMessage",
    "SystemMessage",
    "ResultMessage",
    "StreamEvent",
    "McpServerStatus",
    "Usage",
    "ContentBlock",
    "TextBlock",
    "ToolUseBlock",
    "ToolResultBlock",
    "decode_line",
    "decode_record",
    # Permissions
    "PermissionAllow",
    "PermissionDeny",
    "PermissionHandler",
    "PermissionMediator",
    "PermissionOutcome",
    "PermissionResult",
    "ToolPermissionContext",
    # Transports and scenarios
    "AgentTransport",
    "ProcessTransport",
    "ScriptedTransport",
    "Scenario",
    "ScenarioRegistry",
    "builtin_scenarios",
    "find_cli",
    # Errors
    "AgentError",
    "CliConnectionError",
    "CliNotFoundError",
    "IncompleteSessionError",
    "JsonDecodeError",
    "ProcessError",
    "ProtocolError",
    "ScenarioNotFoundError",
    "SessionCancelledError",
    "ToolDeniedError",
    "ToolPermissionTimeoutError",
]
