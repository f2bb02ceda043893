"""Unit tests for the session controller."""

from __future__ import annotations

import asyncio
import dataclasses
import time

import pytest

from forge_agent_runtime.errors import (
    IncompleteSessionError,
    JsonDecodeError,
    ProcessError,
    ProtocolError,
    SessionCancelledError,
    ToolDeniedError,
    ToolPermissionTimeoutError,
)
from forge_agent_runtime.protocol.messages import (
    AssistantMessage,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
    UserMessage,
)
from forge_agent_runtime.protocols.permission import (
    PermissionAllow,
    PermissionDeny,
    ToolPermissionContext,
    allow_all,
)
from forge_agent_runtime.scenarios import Scenario, builtin_scenarios
from forge_agent_runtime.session import AgentSession, SessionState
from forge_agent_runtime.transport.base import TransportState
from forge_agent_runtime.transport.scripted import ScriptedTransport


def say(text: str) -> AssistantMessage:
    return AssistantMessage(content=(TextBlock(text=text),))


def tool_use(tool_id: str, name: str = "write_file") -> AssistantMessage:
    return AssistantMessage(
        content=(ToolUseBlock(id=tool_id, name=name, input={"path": "notes.txt"}),)
    )


def result(input_tokens: int = 5, output_tokens: int = 10) -> ResultMessage:
    return ResultMessage(
        usage=Usage(input_tokens=input_tokens, output_tokens=output_tokens),
        session_id="sess-1",
    )


async def collect(session: AgentSession) -> list:
    return [message async for message in session]


# =============================================================================
# Happy Path
# =============================================================================


class TestCompletion:
    """Tests for sessions that run to their result."""

    @pytest.mark.asyncio
    async def test_scripted_session_completes(self) -> None:
        """A scripted text turn and result are delivered in order."""
        scenario = Scenario(id="quick", messages=(say("done"), result()), delay_ms=0)
        session = AgentSession(ScriptedTransport(scenario))

        messages = await collect(session)

        assert len(messages) == 2
        assert isinstance(messages[0], AssistantMessage)
        assert messages[0].text == "done"
        assert isinstance(messages[1], ResultMessage)
        assert messages[1].usage.total_tokens == 15
        assert session.state == SessionState.COMPLETED
        assert session.result == messages[1]
        assert session.session_id == "sess-1"
        assert session.error is None

    @pytest.mark.asyncio
    async def test_transport_closed_after_completion(self, line_transport) -> None:
        """Input is ended, exit checked and the transport closed."""
        transport = line_transport(say("hi"), result())
        await collect(AgentSession(transport))

        assert transport.input_ended
        assert transport.finished
        assert transport.close_calls == 1
        assert transport.state == TransportState.CLOSED

    @pytest.mark.asyncio
    async def test_session_id_from_system_message(self, line_transport) -> None:
        """The system message supplies the session id."""
        session = AgentSession(
            line_transport(SystemMessage(session_id="sess-9"), ResultMessage())
        )
        await collect(session)

        assert session.session_id == "sess-9"

    @pytest.mark.asyncio
    async def test_builtin_scenarios_end_with_result(self) -> None:
        """Every built-in scenario replays fully and ends with its result."""
        for scenario in builtin_scenarios():
            replay = dataclasses.replace(scenario, delay_ms=0)
            transport = ScriptedTransport(replay)
            session = AgentSession(transport, permission_handler=allow_all)

            messages = await collect(session)

            assert len(messages) == scenario.message_count
            assert isinstance(messages[-1], ResultMessage)
            assert session.state == SessionState.COMPLETED
            tool_count = sum(
                len(m.tool_uses) for m in messages if isinstance(m, AssistantMessage)
            )
            assert len(transport.responses) == tool_count


# =============================================================================
# Permission Decisions
# =============================================================================


class TestPermissions:
    """Tests for permission mediation during a session."""

    @pytest.mark.asyncio
    async def test_deny_with_interrupt_aborts(self, line_transport) -> None:
        """An interrupting deny ends the session after the tool use message."""
        transport = line_transport(tool_use("t1"), say("after"), result())
        session = AgentSession(
            transport,
            permission_handler=lambda ctx, cancel: PermissionDeny("not allowed", interrupt=True),
        )
        received = []

        with pytest.raises(ToolDeniedError) as exc_info:
            async for message in session:
                received.append(message)

        assert exc_info.value.tool_use_id == "t1"
        assert exc_info.value.tool_name == "write_file"
        assert len(received) == 1
        assert session.state == SessionState.ABORTED
        assert transport.state == TransportState.CLOSED

    @pytest.mark.asyncio
    async def test_deny_without_interrupt_continues(self, line_transport) -> None:
        """A plain deny is sent back and the session continues."""
        transport = line_transport(tool_use("t1"), say("ok, skipping"), result())
        session = AgentSession(
            transport,
            permission_handler=lambda ctx, cancel: PermissionDeny("read only"),
        )

        messages = await collect(session)

        assert len(messages) == 3
        assert session.state == SessionState.COMPLETED
        assert [r.message for r in transport.responses] == ["access denied: read only"]
        assert [o.behavior for o in session.permission_outcomes] == ["deny"]

    @pytest.mark.asyncio
    async def test_allow_with_updated_input(self, line_transport) -> None:
        """Updated input is what gets sent back."""
        transport = line_transport(tool_use("t1"), result())
        session = AgentSession(
            transport,
            permission_handler=lambda ctx, cancel: PermissionAllow(
                updated_input={"path": "sandbox/notes.txt"}
            ),
        )
        await collect(session)

        assert transport.responses[0].input == {"path": "sandbox/notes.txt"}

    @pytest.mark.asyncio
    async def test_timeout_aborts(self, line_transport) -> None:
        """A handler that never answers aborts the session."""

        async def never(ctx: ToolPermissionContext, cancel: asyncio.Event) -> PermissionAllow:
            await asyncio.Event().wait()
            return PermissionAllow()

        transport = line_transport(tool_use("t1"), result())
        session = AgentSession(transport, permission_handler=never, permission_timeout_ms=50)

        with pytest.raises(ToolPermissionTimeoutError):
            await collect(session)

        assert session.state == SessionState.ABORTED
        assert transport.state == TransportState.CLOSED

    @pytest.mark.asyncio
    async def test_blocking_handler_timeout_aborts(self, line_transport) -> None:
        """A plain handler that blocks past the deadline aborts the session."""

        def blocking(ctx: ToolPermissionContext, cancel: asyncio.Event) -> PermissionAllow:
            time.sleep(0.5)
            return PermissionAllow()

        transport = line_transport(tool_use("t1"), result())
        session = AgentSession(transport, permission_handler=blocking, permission_timeout_ms=50)

        with pytest.raises(ToolPermissionTimeoutError):
            await collect(session)

        assert session.state == SessionState.ABORTED
        assert transport.responses == []

    @pytest.mark.asyncio
    async def test_reading_continues_while_blocking_handler_runs(self, line_transport) -> None:
        """Output keeps being drained while a plain handler blocks."""
        transport = line_transport(tool_use("t1"), say("a"), say("b"), result())
        seen: list[int] = []

        def blocking(ctx: ToolPermissionContext, cancel: asyncio.Event) -> PermissionAllow:
            time.sleep(0.1)
            seen.append(transport.read_count)
            return PermissionAllow()

        await collect(AgentSession(transport, permission_handler=blocking))

        assert seen == [4]

    @pytest.mark.asyncio
    async def test_decision_gates_next_message(self, line_transport) -> None:
        """The next message is delivered only after the decision resolves."""
        events: list[str] = []

        async def handler(ctx: ToolPermissionContext, cancel: asyncio.Event) -> PermissionAllow:
            await asyncio.sleep(0.05)
            events.append(f"decided {ctx.tool_use_id}")
            return PermissionAllow()

        session = AgentSession(
            line_transport(tool_use("t1"), say("next"), result()),
            permission_handler=handler,
        )
        async for message in session:
            events.append(type(message).__name__)

        assert events == ["AssistantMessage", "decided t1", "AssistantMessage", "ResultMessage"]

    @pytest.mark.asyncio
    async def test_reading_continues_while_decision_pending(self, line_transport) -> None:
        """Output keeps being drained while a decision is outstanding."""
        transport = line_transport(tool_use("t1"), say("a"), say("b"), result())
        seen: list[int] = []

        async def handler(ctx: ToolPermissionContext, cancel: asyncio.Event) -> PermissionAllow:
            await asyncio.sleep(0.05)
            seen.append(transport.read_count)
            return PermissionAllow()

        await collect(AgentSession(transport, permission_handler=handler))

        assert seen == [4]

    @pytest.mark.asyncio
    async def test_one_decision_per_tool_use(self, line_transport) -> None:
        """Each tool use block gets exactly one decision, in order."""
        calls: list[str] = []

        def handler(ctx: ToolPermissionContext, cancel: asyncio.Event) -> PermissionAllow:
            calls.append(ctx.tool_use_id)
            return PermissionAllow()

        both = AssistantMessage(
            content=(ToolUseBlock(id="t1", name="Read"), ToolUseBlock(id="t2", name="Edit"))
        )
        transport = line_transport(both, tool_use("t3"), result())
        await collect(AgentSession(transport, permission_handler=handler))

        assert calls == ["t1", "t2", "t3"]
        assert [r.tool_use_id for r in transport.responses] == ["t1", "t2", "t3"]

    @pytest.mark.asyncio
    async def test_no_handler_means_no_decisions(self, line_transport) -> None:
        """Without a handler tool uses pass through untouched."""
        transport = line_transport(tool_use("t1"), result())
        session = AgentSession(transport)
        await collect(session)

        assert transport.responses == []
        assert session.permission_outcomes == []


# =============================================================================
# Cancellation
# =============================================================================


class TestCancellation:
    """Tests for caller cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_stops_stream(self, line_transport) -> None:
        """Cancelling between messages aborts the session."""
        transport = line_transport(say("first"), hold_open=True)
        session = AgentSession(transport)
        received = []

        with pytest.raises(SessionCancelledError):
            async for message in session:
                received.append(message)
                session.cancel()

        assert len(received) == 1
        assert session.state == SessionState.ABORTED
        assert transport.state == TransportState.CLOSED

    @pytest.mark.asyncio
    async def test_cancel_while_waiting_for_output(self, line_transport) -> None:
        """Cancellation wakes a consumer waiting on a silent agent."""
        transport = line_transport(hold_open=True)
        session = AgentSession(transport)
        asyncio.get_running_loop().call_later(0.05, session.cancel)

        with pytest.raises(SessionCancelledError):
            await collect(session)

        assert session.state == SessionState.ABORTED

    @pytest.mark.asyncio
    async def test_cancel_during_pending_decision(self, line_transport) -> None:
        """Cancellation aborts a decision that is still pending."""

        async def slow(ctx: ToolPermissionContext, cancel: asyncio.Event) -> PermissionAllow:
            await asyncio.sleep(10)
            return PermissionAllow()

        transport = line_transport(tool_use("t1"), result())
        session = AgentSession(transport, permission_handler=slow)
        asyncio.get_running_loop().call_later(0.05, session.cancel)

        with pytest.raises(SessionCancelledError):
            await collect(session)

        assert session.state == SessionState.ABORTED
        assert transport.responses == []

    @pytest.mark.asyncio
    async def test_external_cancel_event(self, line_transport) -> None:
        """A caller-supplied event cancels the session."""
        cancel = asyncio.Event()
        cancel.set()
        session = AgentSession(line_transport(say("never seen"), result()), cancel_event=cancel)

        with pytest.raises(SessionCancelledError):
            await collect(session)

        assert session.delivered_count == 0


# =============================================================================
# Failures
# =============================================================================


class TestFailures:
    """Tests for sessions that end in FAILED."""

    @pytest.mark.asyncio
    async def test_exit_without_result(self, line_transport) -> None:
        """Clean exit without a result is an incomplete session."""
        session = AgentSession(line_transport(say("working on it")))

        with pytest.raises(IncompleteSessionError):
            await collect(session)

        assert session.state == SessionState.FAILED
        assert isinstance(session.error, IncompleteSessionError)

    @pytest.mark.asyncio
    async def test_process_error_wins_over_incomplete(self, line_transport) -> None:
        """A non-zero exit is reported instead of the missing result."""
        transport = line_transport(say("crash"), exit_error=ProcessError(2, "boom"))
        session = AgentSession(transport)

        with pytest.raises(ProcessError) as exc_info:
            await collect(session)

        assert exc_info.value.exit_code == 2
        assert exc_info.value.stderr == "boom"
        assert session.state == SessionState.FAILED

    @pytest.mark.asyncio
    async def test_output_after_result(self, line_transport) -> None:
        """Nothing may follow the result message."""
        session = AgentSession(line_transport(result(), say("extra")))
        received = []

        with pytest.raises(ProtocolError, match="after the result"):
            async for message in session:
                received.append(message)

        assert [type(m) for m in received] == [ResultMessage]
        assert session.state == SessionState.FAILED

    @pytest.mark.asyncio
    async def test_system_message_not_first(self, line_transport) -> None:
        """A system message after other messages is a protocol error."""
        session = AgentSession(line_transport(say("hi"), SystemMessage(session_id="s")))

        with pytest.raises(ProtocolError, match="first message"):
            await collect(session)

    @pytest.mark.asyncio
    async def test_duplicate_tool_use_id(self, line_transport) -> None:
        """Tool use ids must be unique within a session."""
        session = AgentSession(line_transport(tool_use("t1"), tool_use("t1"), result()))

        with pytest.raises(ProtocolError, match="Duplicate tool use id"):
            await collect(session)

    @pytest.mark.asyncio
    async def test_tool_result_for_unknown_tool_use(self, line_transport) -> None:
        """Tool results must refer to an earlier tool use."""
        orphan = UserMessage(content=(ToolResultBlock(tool_use_id="t9", content="ok"),))
        session = AgentSession(line_transport(orphan, result()))

        with pytest.raises(ProtocolError, match="unknown tool use"):
            await collect(session)

    @pytest.mark.asyncio
    async def test_decode_failure(self, line_transport) -> None:
        """Malformed output fails the session with the offending line."""
        transport = line_transport(say("ok"), "{bad", result())
        session = AgentSession(transport)

        with pytest.raises(JsonDecodeError) as exc_info:
            await collect(session)

        assert exc_info.value.raw_data == "{bad"
        assert session.state == SessionState.FAILED
        assert transport.state == TransportState.CLOSED


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    """Tests for stream consumption and teardown."""

    @pytest.mark.asyncio
    async def test_stream_consumed_once(self, line_transport) -> None:
        """A second consumption fails."""
        session = AgentSession(line_transport(result()))
        await collect(session)

        with pytest.raises(RuntimeError, match="only be consumed once"):
            await collect(session)

    @pytest.mark.asyncio
    async def test_early_break_aborts(self, line_transport) -> None:
        """Leaving the stream early aborts the session and closes the transport."""
        transport = line_transport(say("one"), say("two"), result())

        async with AgentSession(transport) as session:
            async for _message in session:
                break

        assert session.state == SessionState.ABORTED
        assert transport.state == TransportState.CLOSED
        assert transport.close_calls == 1

    @pytest.mark.asyncio
    async def test_close_before_start(self, line_transport) -> None:
        """Closing an unstarted session aborts it."""
        transport = line_transport(result())
        session = AgentSession(transport)
        await session.close()
        await session.close()

        assert session.state == SessionState.ABORTED
        assert transport.close_calls == 1
