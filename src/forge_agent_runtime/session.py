"""Session controller.

Composes transport -> decoder -> permission mediator into one
cancellable, single-pass stream of messages:

    session = AgentSession(transport, permission_handler=handler)
    async with session:
        async for message in session:
            ...

State machine:
    NOT_STARTED -> STARTING -> STREAMING -> COMPLETED | ABORTED | FAILED

A background reader drains transport output into a queue for the whole
session, so a process that keeps writing while a permission decision
is pending never blocks on a full pipe. Decisions gate delivery of the
next message, not reading.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import (
    AgentError,
    CliConnectionError,
    IncompleteSessionError,
    ProtocolError,
    SessionCancelledError,
    ToolDeniedError,
    ToolPermissionTimeoutError,
)
from .protocol.decoder import decode_line
from .protocol.messages import (
    AssistantMessage,
    Message,
    ResultMessage,
    SystemMessage,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)
from .protocols.permission import (
    DEFAULT_PERMISSION_TIMEOUT_MS,
    PermissionHandler,
    PermissionMediator,
    PermissionOutcome,
)
from .transport.base import AgentTransport

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Session lifecycle."""

    NOT_STARTED = "not_started"
    STARTING = "starting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.ABORTED, SessionState.FAILED})

# Errors that end a session as ABORTED rather than FAILED
ABORT_ERRORS = (ToolDeniedError, ToolPermissionTimeoutError, SessionCancelledError)

_EOF = object()


@dataclass(frozen=True)
class _ReaderFailure:
    error: BaseException


class AgentSession:
    """One end-to-end run of the agent against a transport."""

    def __init__(
        self,
        transport: AgentTransport,
        *,
        permission_handler: PermissionHandler | None = None,
        permission_timeout_ms: int = DEFAULT_PERMISSION_TIMEOUT_MS,
        working_directory: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self._transport = transport
        self._mediator = (
            PermissionMediator(
                permission_handler,
                timeout_ms=permission_timeout_ms,
                working_directory=working_directory,
            )
            if permission_handler is not None
            else None
        )
        self._cancel_event = cancel_event if cancel_event is not None else asyncio.Event()

        self._state = SessionState.NOT_STARTED
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._reader_task: asyncio.Task[None] | None = None
        self._decision_task: asyncio.Task[None] | None = None
        self._consumed = False
        self._closed = False

        self._session_id: str | None = None
        self._result: ResultMessage | None = None
        self._error: BaseException | None = None
        self._delivered = 0
        self._tool_use_ids: set[str] = set()

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def transport(self) -> AgentTransport:
        return self._transport

    @property
    def session_id(self) -> str | None:
        """Agent session id, once reported by a system or result message."""
        return self._session_id

    @property
    def result(self) -> ResultMessage | None:
        return self._result

    @property
    def error(self) -> BaseException | None:
        """The exception the session ended with, if any."""
        return self._error

    @property
    def delivered_count(self) -> int:
        return self._delivered

    @property
    def permission_outcomes(self) -> list[PermissionOutcome]:
        return self._mediator.outcomes if self._mediator else []

    @property
    def cancel_event(self) -> asyncio.Event:
        return self._cancel_event

    # -------------------------------------------------------------------------
    # Control
    # -------------------------------------------------------------------------

    def cancel(self) -> None:
        """Request cancellation; the stream raises SessionCancelledError."""
        self._cancel_event.set()

    async def close(self) -> None:
        """Tear down the session. Safe to call at any time, more than once."""
        if self._state not in TERMINAL_STATES:
            self._state = SessionState.ABORTED
        self._consumed = True
        await self._teardown()

    def __aiter__(self) -> AsyncIterator[Message]:
        return self.stream()

    async def __aenter__(self) -> AgentSession:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def stream(self) -> AsyncIterator[Message]:
        """Yield messages in arrival order until the result message.

        Raises:
            CliNotFoundError, CliConnectionError: Startup failed
            JsonDecodeError, ProtocolError: Malformed or out-of-order output
            ProcessError: Agent exited with a non-zero code
            IncompleteSessionError: Agent exited without a result
            ToolDeniedError, ToolPermissionTimeoutError: Permission abort
            SessionCancelledError: cancel() was called
            RuntimeError: The stream was already consumed
        """
        if self._consumed:
            raise RuntimeError("Session stream can only be consumed once")
        self._consumed = True

        try:
            self._state = SessionState.STARTING
            await self._transport.connect()

            self._state = SessionState.STREAMING
            self._reader_task = asyncio.create_task(self._drain_transport())

            async for message in self._deliver():
                yield message

            self._state = SessionState.COMPLETED
            logger.info(f"Session {self._session_id} completed")
        except ABORT_ERRORS as e:
            self._end(SessionState.ABORTED, e)
            raise
        except (asyncio.CancelledError, GeneratorExit) as e:
            self._end(SessionState.ABORTED, e)
            raise
        except Exception as e:
            self._end(SessionState.FAILED, e)
            raise
        finally:
            await self._teardown()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _deliver(self) -> AsyncIterator[Message]:
        while True:
            item = await self._next_line()
            if item is _EOF:
                break

            message = decode_line(item)
            self._check_order(message)
            decision = self._start_decision(message)
            if isinstance(message, ResultMessage):
                self._result = message

            self._delivered += 1
            yield message

            if decision is not None:
                await self._await_decision(decision)
            if self._result is not None:
                break

        if self._result is not None:
            await self._transport.end_input()
            trailing = await self._next_line()
            if trailing is not _EOF:
                raise ProtocolError("Agent produced output after the result message", trailing)

        await self._transport.finish()

        if self._result is None:
            raise IncompleteSessionError("Agent exited without a result message")

    async def _next_line(self) -> Any:
        """Next queued line or _EOF; raises on cancellation or reader failure."""
        if self._cancel_event.is_set():
            raise SessionCancelledError("Session cancelled")

        if not self._queue.empty():
            item = self._queue.get_nowait()
        else:
            getter = asyncio.ensure_future(self._queue.get())
            cancelled = asyncio.ensure_future(self._cancel_event.wait())
            try:
                await asyncio.wait({getter, cancelled}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                cancelled.cancel()
                if not getter.done():
                    getter.cancel()
            if self._cancel_event.is_set():
                raise SessionCancelledError("Session cancelled")
            item = getter.result()

        if isinstance(item, _ReaderFailure):
            raise item.error
        return item

    async def _drain_transport(self) -> None:
        try:
            async for line in self._transport.receive():
                await self._queue.put(line)
        except asyncio.CancelledError:
            raise
        except OSError as e:
            failure = CliConnectionError(f"Failed to read agent output: {e}")
            failure.__cause__ = e
            await self._queue.put(_ReaderFailure(failure))
        except Exception as e:
            await self._queue.put(_ReaderFailure(e))
        else:
            await self._queue.put(_EOF)

    def _check_order(self, message: Message) -> None:
        if isinstance(message, SystemMessage):
            if self._delivered > 0:
                raise ProtocolError("System message must be the first message")
            self._session_id = message.session_id or self._session_id

        elif isinstance(message, AssistantMessage | UserMessage):
            for block in message.content:
                if isinstance(block, ToolUseBlock):
                    if block.id in self._tool_use_ids:
                        raise ProtocolError(f"Duplicate tool use id {block.id!r}")
                    self._tool_use_ids.add(block.id)
                elif isinstance(block, ToolResultBlock):
                    if block.tool_use_id not in self._tool_use_ids:
                        raise ProtocolError(
                            f"Tool result for unknown tool use {block.tool_use_id!r}"
                        )

        elif isinstance(message, ResultMessage):
            self._session_id = message.session_id or self._session_id

    def _start_decision(self, message: Message) -> asyncio.Task[None] | None:
        if self._mediator is None or not isinstance(message, AssistantMessage):
            return None
        blocks = message.tool_uses
        if not blocks:
            return None
        self._decision_task = asyncio.create_task(
            self._resolve_tool_uses(self._mediator, blocks)
        )
        return self._decision_task

    async def _resolve_tool_uses(
        self, mediator: PermissionMediator, blocks: list[ToolUseBlock]
    ) -> None:
        for block in blocks:
            outcome = await mediator.resolve(
                block,
                cancel_event=self._cancel_event,
                session_id=self._session_id,
            )
            sent = await self._transport.send_permission_response(outcome)
            if not sent:
                logger.debug(f"Permission outcome for {block.id} recorded but not sent")

    async def _await_decision(self, decision: asyncio.Task[None]) -> None:
        try:
            await decision
        finally:
            self._decision_task = None

    def _end(self, state: SessionState, error: BaseException) -> None:
        self._state = state
        if isinstance(error, GeneratorExit):
            logger.debug("Session stream closed by consumer")
            return
        self._error = error
        if isinstance(error, AgentError):
            logger.info(f"Session {state.value}: {error}")

    async def _teardown(self) -> None:
        """Release the reader, any pending decision and the transport, once."""
        if self._closed:
            return
        self._closed = True

        tasks = [t for t in (self._decision_task, self._reader_task) if t is not None]
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await self._transport.close()
        logger.debug(f"Session torn down in state {self._state.value}")
