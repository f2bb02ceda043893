"""Transport abstraction for agent sessions.

A transport owns the source of raw stream-json lines for one session:
either a real agent subprocess or a scripted replay. The session
controller drives every transport through the same contract:

    await transport.connect()
    async for line in transport.receive():   # single pass
        ...
    await transport.send_permission_response(outcome)
    await transport.end_input()
    await transport.finish()                 # raises on bad exit
    await transport.close()                  # idempotent teardown
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from ..errors import CliConnectionError
from ..protocols.permission import PermissionOutcome

logger = logging.getLogger(__name__)


class TransportState(str, Enum):
    """Transport lifecycle."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


@runtime_checkable
class AgentTransport(Protocol):
    """Protocol for session transports."""

    @property
    def state(self) -> TransportState:
        """Current transport state."""
        ...

    async def connect(self) -> None:
        """Start the agent (or replay) and write the initial request."""
        ...

    def receive(self) -> AsyncIterator[str]:
        """Yield raw output lines. Can only be consumed once."""
        ...

    async def send_permission_response(self, outcome: PermissionOutcome) -> bool:
        """Deliver a permission outcome. Returns False if it could not be sent."""
        ...

    async def end_input(self) -> None:
        """Signal that no further input will be written."""
        ...

    async def finish(self) -> None:
        """Wait for the agent to exit after output ended; raise on failure."""
        ...

    async def close(self) -> None:
        """Release all resources. Safe to call more than once."""
        ...


class BaseAgentTransport(ABC):
    """Base class with state tracking and single-pass output.

    Subclasses implement the _do_* hooks and _read_lines().
    """

    def __init__(self) -> None:
        self._state = TransportState.DISCONNECTED
        self._lock = asyncio.Lock()
        self._receiving = False

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == TransportState.CONNECTED

    async def connect(self) -> None:
        """Connect the transport.

        Agent errors (for example a missing executable) propagate
        unchanged; OS-level launch failures become CliConnectionError.
        """
        async with self._lock:
            if self._state == TransportState.CONNECTED:
                return
            if self._state == TransportState.CLOSED:
                raise CliConnectionError("Transport is closed")

            self._state = TransportState.CONNECTING
            try:
                await self._do_connect()
            except OSError as e:
                self._state = TransportState.DISCONNECTED
                raise CliConnectionError(f"Failed to start agent: {e}") from e
            except BaseException:
                self._state = TransportState.DISCONNECTED
                raise
            self._state = TransportState.CONNECTED

    async def receive(self) -> AsyncIterator[str]:
        """Yield raw output lines until the source is exhausted."""
        if self._receiving:
            raise RuntimeError("Transport output can only be consumed once")
        if self._state != TransportState.CONNECTED:
            raise CliConnectionError("Transport not connected")
        self._receiving = True

        async for line in self._read_lines():
            yield line

    async def send_permission_response(self, outcome: PermissionOutcome) -> bool:
        if self._state != TransportState.CONNECTED:
            logger.debug(f"Dropping permission response for {outcome.tool_use_id}: not connected")
            return False
        return await self._do_send_permission_response(outcome)

    async def end_input(self) -> None:
        if self._state == TransportState.CONNECTED:
            await self._do_end_input()

    async def finish(self) -> None:
        if self._state == TransportState.CONNECTED:
            await self._do_finish()

    async def close(self) -> None:
        async with self._lock:
            if self._state == TransportState.CLOSED:
                return
            try:
                await self._do_close()
            finally:
                self._state = TransportState.CLOSED

    # Subclass hooks

    @abstractmethod
    async def _do_connect(self) -> None:
        """Implementation-specific connect."""
        ...

    @abstractmethod
    def _read_lines(self) -> AsyncIterator[str]:
        """Implementation-specific line source."""
        ...

    @abstractmethod
    async def _do_send_permission_response(self, outcome: PermissionOutcome) -> bool:
        """Implementation-specific permission write."""
        ...

    async def _do_end_input(self) -> None:
        return None

    async def _do_finish(self) -> None:
        return None

    @abstractmethod
    async def _do_close(self) -> None:
        """Implementation-specific teardown."""
        ...

    async def __aenter__(self) -> BaseAgentTransport:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
