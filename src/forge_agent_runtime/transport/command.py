"""Command-line construction for the agent CLI.

The prompt never goes on the command line; it is written to stdin by
the process transport (see build_initial_payload).
"""

from __future__ import annotations

import json

from ..options import AgentOptions, InputFormat, McpServerConfig, PermissionMode


def build_arguments(options: AgentOptions) -> list[str]:
    """Build CLI arguments for a stream-json session."""
    args = ["--print", "--output-format", "stream-json", "--verbose"]

    if options.input_format == InputFormat.STREAM_JSON:
        args.extend(["--input-format", "stream-json"])

    if options.permission_mode == PermissionMode.ACCEPT_ALL:
        args.append("--dangerously-skip-permissions")

    for tool in options.allowed_tools or []:
        args.extend(["--allowedTools", tool])
    for tool in options.disallowed_tools or []:
        args.extend(["--disallowedTools", tool])

    if options.max_turns is not None:
        args.extend(["--max-turns", str(options.max_turns)])
    if options.system_prompt:
        args.extend(["--system-prompt", options.system_prompt])
    if options.append_system_prompt:
        args.extend(["--append-system-prompt", options.append_system_prompt])
    if options.model:
        args.extend(["--model", options.model])
    if options.resume_session_id:
        args.extend(["--resume", options.resume_session_id])
    if options.continue_conversation:
        args.append("--continue")

    if options.mcp_servers:
        args.extend(["--mcp-config", build_mcp_config(options.mcp_servers)])

    args.extend(options.additional_args or [])
    return args


def build_mcp_config(servers: list[McpServerConfig]) -> str:
    """Serialize MCP servers as the JSON document --mcp-config expects."""
    config: dict[str, dict[str, object]] = {}
    for server in servers:
        entry: dict[str, object] = {"command": server.command, "args": list(server.args)}
        if server.env:
            entry["env"] = dict(server.env)
        config[server.name] = entry
    return json.dumps({"mcpServers": config})


def build_initial_payload(prompt: str, input_format: InputFormat = InputFormat.TEXT) -> bytes:
    """Encode the initial request for stdin."""
    if input_format == InputFormat.STREAM_JSON:
        record = {"type": "user", "message": {"role": "user", "content": prompt}}
        return (json.dumps(record) + "\n").encode("utf-8")
    return prompt.encode("utf-8")
