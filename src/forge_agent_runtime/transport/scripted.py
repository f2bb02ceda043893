"""Scripted transport: replays a scenario instead of running the agent.

Each message is serialized to a stream-json line so replay goes
through the same decoder as real agent output. The scenario is bound
when the transport is created; registry changes made afterwards do not
affect it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from ..protocol.decoder import encode_line
from ..protocols.permission import PermissionOutcome
from ..scenarios import Scenario, ScenarioRegistry
from .base import BaseAgentTransport

logger = logging.getLogger(__name__)


class ScriptedTransport(BaseAgentTransport):
    """Replays a scenario with its fixed inter-message delay."""

    def __init__(self, scenario: Scenario, prompt: str | None = None) -> None:
        super().__init__()
        self._scenario = scenario
        self._prompt = prompt
        self._responses: list[PermissionOutcome] = []
        self._input_closed = False

    @classmethod
    def for_prompt(cls, registry: ScenarioRegistry, prompt: str) -> ScriptedTransport:
        """Bind the scenario the registry selects for ``prompt`` right now."""
        return cls(registry.resolve(prompt), prompt=prompt)

    @property
    def scenario(self) -> Scenario:
        return self._scenario

    @property
    def prompt(self) -> str | None:
        return self._prompt

    @property
    def responses(self) -> list[PermissionOutcome]:
        """Permission responses the session sent back, in order."""
        return list(self._responses)

    @property
    def input_closed(self) -> bool:
        return self._input_closed

    async def _do_connect(self) -> None:
        logger.info(
            f"Replaying scenario {self._scenario.id} "
            f"({self._scenario.message_count} messages, {self._scenario.delay_ms}ms delay)"
        )

    async def _read_lines(self) -> AsyncIterator[str]:
        delay = self._scenario.delay_ms / 1000
        for message in self._scenario.messages:
            if delay > 0:
                await asyncio.sleep(delay)
            yield encode_line(message)

    async def _do_send_permission_response(self, outcome: PermissionOutcome) -> bool:
        self._responses.append(outcome)
        return True

    async def _do_end_input(self) -> None:
        self._input_closed = True

    async def _do_close(self) -> None:
        logger.debug(f"Scenario {self._scenario.id} closed")
