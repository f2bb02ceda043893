"""Per-session options for the agent CLI."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .protocols.permission import DEFAULT_PERMISSION_TIMEOUT_MS, PermissionHandler


class InputFormat(str, Enum):
    """How the initial request is written to the agent's stdin."""

    TEXT = "text"  # Raw prompt, stdin closed afterwards
    STREAM_JSON = "stream-json"  # JSON user record, stdin kept open


class PermissionMode(str, Enum):
    """How the agent CLI gates its own tool execution."""

    DEFAULT = "default"
    ACCEPT_ALL = "accept-all"
    ALLOWLIST = "allowlist"


@dataclass(frozen=True)
class McpServerConfig:
    """An MCP server the agent should start for the session."""

    name: str
    command: str
    args: tuple[str, ...] = ()
    env: dict[str, str] | None = None


@dataclass
class AgentOptions:
    """Options for one agent session.

    Fields left at their defaults are omitted from the command line.
    """

    # Executable discovery
    cli_path: str | None = None
    search_paths: list[str] | None = None
    working_directory: str | None = None

    # Agent behaviour
    input_format: InputFormat = InputFormat.TEXT
    permission_mode: PermissionMode = PermissionMode.DEFAULT
    allowed_tools: list[str] | None = None
    disallowed_tools: list[str] | None = None
    max_turns: int | None = None
    system_prompt: str | None = None
    append_system_prompt: str | None = None
    model: str | None = None
    resume_session_id: str | None = None
    continue_conversation: bool = False
    mcp_servers: list[McpServerConfig] | None = None

    # Process
    env: dict[str, str] | None = None
    additional_args: list[str] | None = None
    terminate_grace_seconds: float = 5.0
    stderr_limit: int = 64 * 1024

    # Permission mediation
    permission_handler: PermissionHandler | None = field(default=None, repr=False)
    permission_timeout_ms: int = DEFAULT_PERMISSION_TIMEOUT_MS

    @property
    def streaming_input(self) -> bool:
        return self.input_format == InputFormat.STREAM_JSON

    def merge(self, overrides: AgentOptions | None) -> AgentOptions:
        """Return a copy with every non-default field of ``overrides`` applied.

        ``env`` is merged key by key and ``additional_args`` are concatenated.
        """
        if overrides is None:
            return dataclasses.replace(self)

        changes: dict[str, Any] = {}
        for f in dataclasses.fields(self):
            value = getattr(overrides, f.name)
            if value != _field_default(f):
                changes[f.name] = value

        if self.env and overrides.env:
            changes["env"] = {**self.env, **overrides.env}
        if self.additional_args and overrides.additional_args:
            changes["additional_args"] = [*self.additional_args, *overrides.additional_args]

        return dataclasses.replace(self, **changes)


def _field_default(f: dataclasses.Field[Any]) -> Any:
    if f.default is not dataclasses.MISSING:
        return f.default
    if f.default_factory is not dataclasses.MISSING:
        return f.default_factory()
    return None
