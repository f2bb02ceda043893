"""High-level client for running agent sessions.

Usage:
    client = AgentClient(AgentOptions(model="claude-sonnet-4-20250514"))

    async for message in client.query_stream("Fix the failing test"):
        print(message)

    text = await client.query_text("Summarize README.md")

In mock mode every session replays a scenario chosen from the registry
instead of launching the agent CLI.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from .config import RuntimeSettings
from .options import AgentOptions
from .protocol.messages import AssistantMessage, Message
from .protocols.permission import PermissionHandler
from .scenarios import ScenarioRegistry
from .session import AgentSession
from .transport.base import AgentTransport
from .transport.process import ProcessTransport
from .transport.scripted import ScriptedTransport

logger = logging.getLogger(__name__)


class AgentClient:
    """Starts agent sessions with shared default options."""

    def __init__(
        self,
        options: AgentOptions | None = None,
        *,
        mock_mode: bool = False,
        registry: ScenarioRegistry | None = None,
    ) -> None:
        self._options = options or AgentOptions()
        self._mock_mode = mock_mode
        self._registry = registry if registry is not None else ScenarioRegistry()

    @property
    def options(self) -> AgentOptions:
        return self._options

    @property
    def mock_mode(self) -> bool:
        return self._mock_mode

    @property
    def registry(self) -> ScenarioRegistry:
        return self._registry

    def create_transport(self, prompt: str, options: AgentOptions) -> AgentTransport:
        """Pick the transport for a session; scripted in mock mode."""
        if self._mock_mode:
            return ScriptedTransport.for_prompt(self._registry, prompt)
        return ProcessTransport.from_options(prompt, options)

    def start_session(
        self,
        prompt: str,
        options: AgentOptions | None = None,
        *,
        permission_handler: PermissionHandler | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AgentSession:
        """Create a session for ``prompt``. Nothing runs until it is iterated.

        Args:
            prompt: The initial request
            options: Per-call options merged over the client defaults
            permission_handler: Overrides options.permission_handler
            cancel_event: Set it to cancel the session

        Raises:
            ValueError: Empty prompt
        """
        if not prompt or not prompt.strip():
            raise ValueError("Prompt must not be empty")

        merged = self._options.merge(options)
        handler = permission_handler or merged.permission_handler
        transport = self.create_transport(prompt, merged)
        logger.debug(f"Starting session with {type(transport).__name__}")

        return AgentSession(
            transport,
            permission_handler=handler,
            permission_timeout_ms=merged.permission_timeout_ms,
            working_directory=merged.working_directory,
            cancel_event=cancel_event,
        )

    async def query_stream(
        self,
        prompt: str,
        options: AgentOptions | None = None,
        *,
        permission_handler: PermissionHandler | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[Message]:
        """Run a session and yield its messages."""
        session = self.start_session(
            prompt,
            options,
            permission_handler=permission_handler,
            cancel_event=cancel_event,
        )
        async with session, contextlib.aclosing(session.stream()) as messages:
            async for message in messages:
                yield message

    async def query(
        self,
        prompt: str,
        options: AgentOptions | None = None,
        *,
        permission_handler: PermissionHandler | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[Message]:
        """Run a session and collect all of its messages."""
        return [
            message
            async for message in self.query_stream(
                prompt,
                options,
                permission_handler=permission_handler,
                cancel_event=cancel_event,
            )
        ]

    async def query_text(
        self,
        prompt: str,
        options: AgentOptions | None = None,
        *,
        permission_handler: PermissionHandler | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> str:
        """Run a session and return the assistant's text, one line per turn."""
        messages = await self.query(
            prompt,
            options,
            permission_handler=permission_handler,
            cancel_event=cancel_event,
        )
        parts = [m.text for m in messages if isinstance(m, AssistantMessage) and m.text]
        return "\n".join(parts)


def create_agent_client(
    settings: RuntimeSettings | None = None,
    registry: ScenarioRegistry | None = None,
    options: AgentOptions | None = None,
) -> AgentClient:
    """Build a client from runtime settings (environment by default).

    Loads the configured scenario file into the registry in mock mode.
    """
    settings = settings or RuntimeSettings.from_env()
    registry = registry if registry is not None else ScenarioRegistry()

    base = AgentOptions(
        cli_path=settings.cli_path,
        permission_timeout_ms=settings.permission_timeout_ms,
        terminate_grace_seconds=settings.terminate_grace_seconds,
    )
    merged = base.merge(options)

    if settings.mock_mode and settings.scenarios_file:
        registry.load_file(settings.scenarios_file)

    logger.info(f"Agent client created (mock_mode={settings.mock_mode})")
    return AgentClient(merged, mock_mode=settings.mock_mode, registry=registry)
