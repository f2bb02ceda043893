"""Forge agent runtime CLI.

Usage:
    forge-agent run "Fix the failing test"          # Run the agent CLI
    forge-agent run "fix this bug" --mock            # Replay a scenario
    forge-agent run "hello" --scenario quick-success
    forge-agent run "hello" --format json            # Stream-json output

    forge-agent serve                                # Mock query and scenario server
    forge-agent scenarios list                       # List scenarios
    forge-agent locate                               # Find the agent CLI
    forge-agent health                               # Check a running server
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from typing import Any

import click
import httpx

from .client import create_agent_client
from .config import RuntimeSettings, configure_logging
from .errors import AgentError, CliNotFoundError, ScenarioNotFoundError
from .options import AgentOptions, InputFormat
from .protocol.decoder import encode_line
from .protocol.messages import AssistantMessage, Message, ResultMessage, UserMessage
from .protocols.permission import (
    PermissionAllow,
    PermissionDeny,
    PermissionHandler,
    PermissionResult,
    ToolPermissionContext,
    allow_all,
)
from .scenarios import ScenarioRegistry
from .transport.locator import find_cli

# Output format options
FORMAT_TEXT = "text"
FORMAT_TABLE = "table"
FORMAT_JSON = "json"

PERMISSION_ASK = "ask"
PERMISSION_ALLOW = "allow"
PERMISSION_DENY = "deny"


def truncate(text: str | None, max_len: int = 50) -> str:
    """Truncate text for display."""
    if not text:
        return ""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


@click.group()
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (default: FORGE_AGENT_LOG_LEVEL or WARNING)",
)
def main(log_level: str | None) -> None:
    """Forge agent runtime - drive a coding agent as a streaming session."""
    level = log_level or RuntimeSettings.from_env().log_level
    configure_logging(level.upper())


# =============================================================================
# Run
# =============================================================================


@main.command()
@click.argument("prompt")
@click.option("--mock", is_flag=True, help="Replay a scripted scenario instead of the agent")
@click.option("--scenario", "scenario_id", help="Scenario to replay (implies --mock)")
@click.option(
    "--scenarios-file",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML file with extra scenarios",
)
@click.option("--cli-path", help="Path to the agent executable")
@click.option(
    "--cwd",
    "working_directory",
    type=click.Path(exists=True, file_okay=False),
    help="Working directory for the agent",
)
@click.option("--model", help="Model to use")
@click.option("--max-turns", type=int, help="Maximum agent turns")
@click.option("--allow-tool", "allowed_tools", multiple=True, help="Tool to allow (repeatable)")
@click.option(
    "--permissions",
    type=click.Choice([PERMISSION_ASK, PERMISSION_ALLOW, PERMISSION_DENY]),
    default=PERMISSION_ALLOW,
    help="How tool use requests are answered",
)
@click.option("--permission-timeout-ms", type=int, help="Deadline for each permission decision")
@click.option(
    "--streaming-input",
    is_flag=True,
    help="Keep stdin open so permission decisions reach the agent",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TEXT, FORMAT_JSON]),
    default=FORMAT_TEXT,
    help="Output format",
)
def run(
    prompt: str,
    mock: bool,
    scenario_id: str | None,
    scenarios_file: str | None,
    cli_path: str | None,
    working_directory: str | None,
    model: str | None,
    max_turns: int | None,
    allowed_tools: tuple[str, ...],
    permissions: str,
    permission_timeout_ms: int | None,
    streaming_input: bool,
    output_format: str,
) -> None:
    """Run one agent session and print its messages.

    Examples:

        # Ask the agent, approving tool use interactively
        forge-agent run "Add a docstring to utils.py" --permissions ask

        # Replay the error scenario as stream-json
        forge-agent run "anything" --scenario error --format json
    """
    settings = RuntimeSettings.from_env()
    if mock or scenario_id:
        settings.mock_mode = True
    if scenarios_file:
        settings.scenarios_file = scenarios_file

    options = AgentOptions(
        cli_path=cli_path,
        working_directory=working_directory,
        model=model,
        max_turns=max_turns,
        allowed_tools=list(allowed_tools) or None,
        input_format=InputFormat.STREAM_JSON if streaming_input else InputFormat.TEXT,
        permission_handler=_permission_handler(permissions),
    )
    if permission_timeout_ms is not None:
        options.permission_timeout_ms = permission_timeout_ms

    try:
        client = create_agent_client(settings, options=options)
        if scenario_id:
            client.registry.set_default(scenario_id)
    except ScenarioNotFoundError as e:
        raise click.BadParameter(str(e), param_hint="--scenario") from e
    except (AgentError, OSError, ValueError, KeyError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    async def stream() -> None:
        async for message in client.query_stream(prompt):
            _print_message(message, output_format)

    try:
        asyncio.run(stream())
    except AgentError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nCancelled", err=True)
        sys.exit(130)


def _permission_handler(policy: str) -> PermissionHandler:
    if policy == PERMISSION_ALLOW:
        return allow_all

    if policy == PERMISSION_DENY:

        def deny(context: ToolPermissionContext, cancel_event: asyncio.Event) -> PermissionResult:
            return PermissionDeny(f"{context.tool_name} is not permitted")

        return deny

    async def ask(context: ToolPermissionContext, cancel_event: asyncio.Event) -> PermissionResult:
        summary = truncate(json.dumps(context.input, default=str), 80)
        approved = await asyncio.to_thread(
            click.confirm, f"Allow {context.tool_name} {summary}?", default=True, err=True
        )
        if approved:
            return PermissionAllow()
        return PermissionDeny("denied by user")

    return ask


def _print_message(message: Message, output_format: str) -> None:
    if output_format == FORMAT_JSON:
        click.echo(encode_line(message))
        return

    if isinstance(message, AssistantMessage):
        if message.text:
            click.echo(message.text)
        for tool in message.tool_uses:
            click.echo(f"  [tool] {tool.name} {truncate(json.dumps(tool.input, default=str), 60)}")
    elif isinstance(message, UserMessage):
        if message.text:
            click.echo(f"  [user] {truncate(message.text, 60)}")
    elif isinstance(message, ResultMessage):
        cost = f"${message.cost_usd:.4f}" if message.cost_usd is not None else "n/a"
        click.echo(
            f"\nDone: {message.num_turns or 0} turn(s), "
            f"{message.usage.total_tokens} tokens, cost {cost}",
            err=True,
        )


# =============================================================================
# Serve
# =============================================================================


@main.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=4096, help="Port to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
@click.option(
    "--scenarios-file",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML file with extra scenarios",
)
def serve(host: str, port: int, reload: bool, scenarios_file: str | None) -> None:
    """Run the query and scenario control server in mock mode."""
    import uvicorn

    # The app factory reads its settings from the environment
    os.environ["FORGE_AGENT_MOCK_MODE"] = "1"
    if scenarios_file:
        os.environ["FORGE_AGENT_SCENARIOS_FILE"] = os.path.abspath(scenarios_file)

    click.echo(f"Starting forge agent runtime on http://{host}:{port}", err=True)
    click.echo("  Query: POST /api/query", err=True)
    click.echo("  Scenario control: /api/mock/*", err=True)
    click.echo("Press Ctrl+C to stop", err=True)

    uvicorn.run(
        "forge_agent_runtime.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


# =============================================================================
# Scenario Commands
# =============================================================================


@main.group()
def scenarios() -> None:
    """Inspect scripted scenarios."""


@scenarios.command("list")
@click.option(
    "--file",
    "scenarios_file",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML file with extra scenarios",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
def scenarios_list(scenarios_file: str | None, output_format: str) -> None:
    """List built-in (and file-defined) scenarios."""
    registry = ScenarioRegistry()
    if scenarios_file:
        try:
            registry.load_file(scenarios_file)
        except (AgentError, ValueError, KeyError) as e:
            click.echo(f"Failed to load {scenarios_file}: {e}", err=True)
            sys.exit(1)

    items: list[dict[str, Any]] = [s.to_dict() for s in registry.scenarios()]

    if output_format == FORMAT_JSON:
        click.echo(json.dumps(items, indent=2, ensure_ascii=False))
        return

    default_id = registry.default_scenario_id
    click.echo(f"{'ID':<20} {'Msgs':>5} {'Delay':>7}  {'Description':<40}")
    click.echo("-" * 76)
    for item in items:
        marker = "*" if item["id"] == default_id else " "
        click.echo(
            f"{marker}{truncate(item['id'], 19):<19} {item['message_count']:>5} "
            f"{item['delay_ms']:>5}ms  {truncate(item['description'], 40):<40}"
        )
    click.echo(f"\nTotal: {len(items)} scenario(s), * = default")


# =============================================================================
# Utilities
# =============================================================================


@main.command()
@click.option("--cli-path", help="Explicit executable to check first")
def locate(cli_path: str | None) -> None:
    """Find the agent executable."""
    settings = RuntimeSettings.from_env()
    try:
        path = find_cli(cli_path or settings.cli_path)
    except CliNotFoundError as e:
        click.echo("Agent CLI not found. Searched:", err=True)
        for searched in e.searched_paths:
            click.echo(f"  {searched}", err=True)
        sys.exit(1)
    click.echo(path)


@main.command()
@click.option("--url", default="http://localhost:4096", help="Server URL")
def health(url: str) -> None:
    """Check server health."""

    async def check() -> None:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(f"{url}/health")
                if response.status_code == 200:
                    data = response.json()
                    click.echo(f"Server is healthy: {data}")
                else:
                    click.echo(f"Server returned {response.status_code}", err=True)
                    sys.exit(1)
        except httpx.ConnectError:
            click.echo(f"Cannot connect to server at {url}", err=True)
            sys.exit(1)

    asyncio.run(check())


if __name__ == "__main__":
    main()
