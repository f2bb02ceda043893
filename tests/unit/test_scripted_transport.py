"""Unit tests for the scripted transport."""

from __future__ import annotations

import asyncio
import dataclasses

import pytest

from forge_agent_runtime.errors import CliConnectionError
from forge_agent_runtime.protocol.decoder import decode_line
from forge_agent_runtime.protocol.messages import AssistantMessage, ResultMessage, TextBlock
from forge_agent_runtime.protocols.permission import PermissionOutcome
from forge_agent_runtime.scenarios import Scenario, ScenarioRegistry
from forge_agent_runtime.transport.base import AgentTransport, TransportState
from forge_agent_runtime.transport.scripted import ScriptedTransport


async def read_all(transport: ScriptedTransport) -> list[str]:
    return [line async for line in transport.receive()]


class TestReplay:
    """Tests for replaying a scenario."""

    @pytest.mark.asyncio
    async def test_replays_messages_in_order(self, registry: ScenarioRegistry) -> None:
        """Lines decode back to the scenario's messages."""
        scenario = dataclasses.replace(registry.get("quick-success"), delay_ms=0)
        transport = ScriptedTransport(scenario)
        await transport.connect()

        lines = await read_all(transport)

        assert [decode_line(line) for line in lines] == list(scenario.messages)

    @pytest.mark.asyncio
    async def test_replay_is_deterministic(self, registry: ScenarioRegistry) -> None:
        """Two replays of a scenario produce identical lines."""
        scenario = dataclasses.replace(registry.get("default"), delay_ms=0)
        first = ScriptedTransport(scenario)
        second = ScriptedTransport(scenario)
        await first.connect()
        await second.connect()

        assert await read_all(first) == await read_all(second)

    @pytest.mark.asyncio
    async def test_delay_between_messages(self) -> None:
        """Each message waits for the scenario delay."""
        scenario = Scenario(
            id="slow",
            messages=(AssistantMessage(content=(TextBlock(text="hi"),)), ResultMessage()),
            delay_ms=30,
        )
        transport = ScriptedTransport(scenario)
        await transport.connect()
        loop = asyncio.get_running_loop()
        started = loop.time()

        await read_all(transport)

        assert loop.time() - started >= 0.05

    @pytest.mark.asyncio
    async def test_receive_once(self, registry: ScenarioRegistry) -> None:
        """Output can only be consumed once."""
        transport = ScriptedTransport(dataclasses.replace(registry.get("error"), delay_ms=0))
        await transport.connect()
        await read_all(transport)

        with pytest.raises(RuntimeError):
            await read_all(transport)

    @pytest.mark.asyncio
    async def test_receive_requires_connect(self, registry: ScenarioRegistry) -> None:
        """Reading before connect fails."""
        transport = ScriptedTransport(registry.get("error"))

        with pytest.raises(CliConnectionError):
            await read_all(transport)


class TestBinding:
    """Tests for scenario selection."""

    def test_scenario_bound_at_creation(self, registry: ScenarioRegistry) -> None:
        """Registry changes after creation do not affect the transport."""
        registry.map_pattern("bug", "error")
        transport = ScriptedTransport.for_prompt(registry, "fix this bug")
        registry.reset()

        assert transport.scenario.id == "error"
        assert transport.prompt == "fix this bug"

    def test_satisfies_transport_protocol(self, registry: ScenarioRegistry) -> None:
        """ScriptedTransport is an AgentTransport."""
        assert isinstance(ScriptedTransport(registry.get("default")), AgentTransport)


class TestControl:
    """Tests for permission responses and lifecycle."""

    @pytest.mark.asyncio
    async def test_permission_responses_recorded(self, registry: ScenarioRegistry) -> None:
        """Responses sent while connected are recorded in order."""
        transport = ScriptedTransport(registry.get("default"))
        await transport.connect()
        outcome = PermissionOutcome(tool_use_id="tool_01", tool_name="Read", behavior="allow")

        assert await transport.send_permission_response(outcome) is True
        assert transport.responses == [outcome]

    @pytest.mark.asyncio
    async def test_response_dropped_when_not_connected(self, registry: ScenarioRegistry) -> None:
        """Responses are not delivered before connect."""
        transport = ScriptedTransport(registry.get("default"))
        outcome = PermissionOutcome(tool_use_id="tool_01", tool_name="Read", behavior="allow")

        assert await transport.send_permission_response(outcome) is False
        assert transport.responses == []

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, registry: ScenarioRegistry) -> None:
        """close() can be called repeatedly; connecting afterwards fails."""
        transport = ScriptedTransport(registry.get("default"))
        async with transport:
            assert transport.state == TransportState.CONNECTED
            await transport.end_input()
            assert transport.input_closed
        await transport.close()

        assert transport.state == TransportState.CLOSED
        with pytest.raises(CliConnectionError):
            await transport.connect()
