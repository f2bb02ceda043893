"""Permission mediation for agent tool use.

Every ToolUse block the agent emits is handed to a host-supplied
decision function. The decision is raced against a deadline and the
session's cancellation event, then merged into a PermissionOutcome that
the transport writes back to the agent.

Handlers may be coroutine functions or plain functions. Plain functions
run in a worker thread so a blocking handler cannot stall the event loop
or outlive its deadline unnoticed:

    async def handler(context, cancel_event):
        if context.tool_name == "Bash":
            return PermissionDeny("shell access is disabled")
        return PermissionAllow()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal

from ..errors import SessionCancelledError, ToolDeniedError, ToolPermissionTimeoutError
from ..protocol.messages import ToolUseBlock

logger = logging.getLogger(__name__)

DEFAULT_PERMISSION_TIMEOUT_MS = 60_000
DENIED_PREFIX = "access denied: "


@dataclass(frozen=True)
class PermissionAllow:
    """Let the tool run, optionally with replaced input."""

    updated_input: Any | None = None


@dataclass(frozen=True)
class PermissionDeny:
    """Refuse the tool. With interrupt=True the session aborts."""

    message: str
    interrupt: bool = False


PermissionResult = PermissionAllow | PermissionDeny


@dataclass(frozen=True)
class ToolPermissionContext:
    """Read-only snapshot handed to the permission handler."""

    tool_name: str
    tool_use_id: str
    input: Any
    working_directory: str | None = None
    session_id: str | None = None


PermissionHandler = Callable[
    [ToolPermissionContext, asyncio.Event],
    Awaitable[PermissionResult] | PermissionResult,
]


@dataclass(frozen=True)
class PermissionOutcome:
    """A resolved decision, ready to be sent back to the agent."""

    tool_use_id: str
    tool_name: str
    behavior: Literal["allow", "deny"]
    input: Any = None
    message: str | None = None

    @property
    def allowed(self) -> bool:
        return self.behavior == "allow"

    def to_record(self) -> dict[str, Any]:
        """Encode as a stream-json control response."""
        if self.allowed:
            response: dict[str, Any] = {"behavior": "allow", "updatedInput": self.input}
        else:
            response = {"behavior": "deny", "message": self.message}
        return {
            "type": "control_response",
            "response": {
                "subtype": "success",
                "request_id": self.tool_use_id,
                "response": response,
            },
        }


class PermissionMediator:
    """Resolves permission decisions for tool uses, one at a time.

    Outcomes:
        PermissionAllow -> allow with updated_input or the original input
        PermissionDeny(interrupt=False) -> deny, agent sees "access denied: ..."
        PermissionDeny(interrupt=True) -> ToolDeniedError
        deadline exceeded -> ToolPermissionTimeoutError
        cancel_event set while pending -> SessionCancelledError
    """

    def __init__(
        self,
        handler: PermissionHandler,
        *,
        timeout_ms: int = DEFAULT_PERMISSION_TIMEOUT_MS,
        working_directory: str | None = None,
    ) -> None:
        if timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {timeout_ms}")
        self._handler = handler
        self._timeout_ms = timeout_ms
        self._working_directory = working_directory
        self._lock = asyncio.Lock()
        self._outcomes: list[PermissionOutcome] = []

    @property
    def timeout_ms(self) -> int:
        return self._timeout_ms

    @property
    def outcomes(self) -> list[PermissionOutcome]:
        """Decisions resolved so far, in order."""
        return list(self._outcomes)

    @property
    def pending(self) -> bool:
        return self._lock.locked()

    async def resolve(
        self,
        block: ToolUseBlock,
        *,
        cancel_event: asyncio.Event,
        session_id: str | None = None,
    ) -> PermissionOutcome:
        """Ask the handler about one tool use and merge its answer.

        Raises:
            ToolDeniedError: Handler denied with interrupt
            ToolPermissionTimeoutError: Handler missed the deadline
            SessionCancelledError: Session cancelled while waiting
        """
        context = ToolPermissionContext(
            tool_name=block.name,
            tool_use_id=block.id,
            input=block.input,
            working_directory=self._working_directory,
            session_id=session_id,
        )

        async with self._lock:
            logger.debug(f"Requesting permission for {block.name} ({block.id})")
            result = await self._await_decision(context, cancel_event)

        outcome = self._merge(block, result)
        self._outcomes.append(outcome)
        logger.debug(f"Permission for {block.name} ({block.id}): {outcome.behavior}")
        return outcome

    async def _await_decision(
        self, context: ToolPermissionContext, cancel_event: asyncio.Event
    ) -> PermissionResult:
        if cancel_event.is_set():
            raise SessionCancelledError(
                f"Session cancelled before permission for '{context.tool_name}' was requested"
            )

        decision = asyncio.ensure_future(self._invoke(context, cancel_event))
        cancelled = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {decision, cancelled},
                timeout=self._timeout_ms / 1000,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancelled.cancel()
            if not decision.done():
                decision.cancel()

        if decision in done:
            return decision.result()

        if cancelled in done:
            logger.info(f"Permission request for {context.tool_name} cancelled")
            raise SessionCancelledError(
                f"Session cancelled while awaiting permission for '{context.tool_name}'"
            )

        logger.warning(
            f"Permission handler for {context.tool_name} timed out after {self._timeout_ms}ms"
        )
        raise ToolPermissionTimeoutError(context.tool_name, context.tool_use_id, self._timeout_ms)

    async def _invoke(
        self, context: ToolPermissionContext, cancel_event: asyncio.Event
    ) -> PermissionResult:
        if inspect.iscoroutinefunction(self._handler):
            result = await self._handler(context, cancel_event)
        else:
            result = await asyncio.to_thread(self._handler, context, cancel_event)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _merge(self, block: ToolUseBlock, result: Any) -> PermissionOutcome:
        if isinstance(result, PermissionAllow):
            new_input = block.input if result.updated_input is None else result.updated_input
            return PermissionOutcome(
                tool_use_id=block.id,
                tool_name=block.name,
                behavior="allow",
                input=new_input,
            )

        if isinstance(result, PermissionDeny):
            if result.interrupt:
                logger.info(f"Tool {block.name} ({block.id}) denied with interrupt")
                raise ToolDeniedError(block.name, block.id, result.message)
            return PermissionOutcome(
                tool_use_id=block.id,
                tool_name=block.name,
                behavior="deny",
                message=f"{DENIED_PREFIX}{result.message}",
            )

        raise TypeError(
            f"Permission handler must return PermissionAllow or PermissionDeny, "
            f"got {type(result).__name__}"
        )


def allow_all(context: ToolPermissionContext, cancel_event: asyncio.Event) -> PermissionResult:
    """Handler that approves every tool use unchanged."""
    return PermissionAllow()
