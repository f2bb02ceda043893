"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from forge_agent_runtime.protocol.decoder import encode_line
from forge_agent_runtime.protocols.permission import PermissionOutcome
from forge_agent_runtime.scenarios import ScenarioRegistry
from forge_agent_runtime.transport.base import BaseAgentTransport


class LineTransport(BaseAgentTransport):
    """Transport that yields prepared raw lines.

    Records what the session does with it: lines read, permission
    responses, end of input, finish and close.
    """

    def __init__(
        self,
        lines: list[str],
        *,
        exit_error: Exception | None = None,
        hold_open: bool = False,
    ) -> None:
        super().__init__()
        self.lines = lines
        self.exit_error = exit_error
        self.hold_open = hold_open
        self.read_count = 0
        self.responses: list[PermissionOutcome] = []
        self.input_ended = False
        self.finished = False
        self.close_calls = 0

    async def _do_connect(self) -> None:
        return None

    async def _read_lines(self) -> AsyncIterator[str]:
        for line in self.lines:
            self.read_count += 1
            yield line
        if self.hold_open:
            # Behaves like a process that never exits
            await asyncio.Event().wait()

    async def _do_send_permission_response(self, outcome: PermissionOutcome) -> bool:
        self.responses.append(outcome)
        return True

    async def _do_end_input(self) -> None:
        self.input_ended = True

    async def _do_finish(self) -> None:
        self.finished = True
        if self.exit_error is not None:
            raise self.exit_error

    async def _do_close(self) -> None:
        self.close_calls += 1


@pytest.fixture(scope="module")
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


@pytest.fixture
def registry() -> ScenarioRegistry:
    """Fresh scenario registry with the built-in scenarios."""
    return ScenarioRegistry()


@pytest.fixture
def line_transport() -> Callable[..., LineTransport]:
    """Factory for LineTransport; accepts messages or raw strings."""

    def factory(*items: Any, **kwargs: Any) -> LineTransport:
        lines = [item if isinstance(item, str) else encode_line(item) for item in items]
        return LineTransport(lines, **kwargs)

    return factory
