"""Process transport: runs the agent CLI as a subprocess.

Wire format:
- Request: raw prompt on stdin (stdin then closed), or a JSON user
  record when streaming input is enabled (stdin stays open)
- Output: one JSON object per line on stdout
- Permission responses: JSON control_response lines on stdin
- Diagnostics: stderr, kept in a bounded buffer
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
from collections.abc import AsyncIterator, Mapping, Sequence

from ..errors import CliConnectionError, ProcessError, ProtocolError
from ..options import AgentOptions
from ..protocols.permission import PermissionOutcome
from .base import BaseAgentTransport
from .command import build_arguments, build_initial_payload
from .locator import DEFAULT_EXECUTABLE, find_cli

logger = logging.getLogger(__name__)

# Largest single line accepted from stdout
STREAM_LIMIT = 16 * 1024 * 1024
DEFAULT_STDERR_LIMIT = 64 * 1024


class StderrBuffer:
    """Keeps the most recent ``limit`` bytes of stderr."""

    def __init__(self, limit: int = DEFAULT_STDERR_LIMIT) -> None:
        self._limit = limit
        self._data = bytearray()
        self._dropped = 0

    @property
    def dropped(self) -> int:
        return self._dropped

    def append(self, chunk: bytes) -> None:
        self._data.extend(chunk)
        overflow = len(self._data) - self._limit
        if overflow > 0:
            del self._data[:overflow]
            self._dropped += overflow

    def text(self) -> str:
        text = self._data.decode("utf-8", errors="replace").strip()
        if self._dropped:
            return f"[{self._dropped} bytes truncated]\n{text}"
        return text


class ProcessTransport(BaseAgentTransport):
    """Owns exactly one agent subprocess for the lifetime of a session."""

    def __init__(
        self,
        executable: str | None = None,
        arguments: Sequence[str] = (),
        *,
        search_paths: Sequence[str] | None = None,
        initial_input: bytes | None = None,
        keep_stdin_open: bool = False,
        working_directory: str | None = None,
        env: Mapping[str, str] | None = None,
        terminate_grace_seconds: float = 5.0,
        stderr_limit: int = DEFAULT_STDERR_LIMIT,
        executable_name: str = DEFAULT_EXECUTABLE,
    ) -> None:
        super().__init__()
        self._executable = executable
        self._arguments = list(arguments)
        self._search_paths = list(search_paths) if search_paths is not None else None
        self._initial_input = initial_input
        self._keep_stdin_open = keep_stdin_open
        self._working_directory = working_directory
        self._env = dict(env) if env else None
        self._terminate_grace_seconds = terminate_grace_seconds
        self._executable_name = executable_name

        self._stderr = StderrBuffer(stderr_limit)
        self._resolved_path: str | None = None
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task[None] | None = None

    @classmethod
    def from_options(cls, prompt: str, options: AgentOptions) -> ProcessTransport:
        """Create a transport that runs the agent CLI for ``prompt``."""
        return cls(
            options.cli_path,
            build_arguments(options),
            search_paths=options.search_paths,
            initial_input=build_initial_payload(prompt, options.input_format),
            keep_stdin_open=options.streaming_input,
            working_directory=options.working_directory,
            env=options.env,
            terminate_grace_seconds=options.terminate_grace_seconds,
            stderr_limit=options.stderr_limit,
        )

    @property
    def executable_path(self) -> str | None:
        """Resolved executable, once connected."""
        return self._resolved_path

    @property
    def arguments(self) -> list[str]:
        return list(self._arguments)

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    @property
    def stderr(self) -> str:
        return self._stderr.text()

    async def _do_connect(self) -> None:
        """Resolve the executable, launch it and write the request."""
        path = find_cli(self._executable, self._search_paths, self._executable_name)
        self._resolved_path = path

        env = None
        if self._env:
            env = {**os.environ, **self._env}

        self._process = await asyncio.create_subprocess_exec(
            path,
            *self._arguments,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self._working_directory,
            env=env,
            limit=STREAM_LIMIT,
        )
        self._stderr_task = asyncio.create_task(self._capture_stderr())
        logger.info(f"Launched agent: {path} (pid={self._process.pid})")

        await self._write_initial_input()

    async def _write_initial_input(self) -> None:
        if not self._process or not self._process.stdin:
            raise CliConnectionError("Process not running")

        stdin = self._process.stdin
        try:
            if self._initial_input:
                stdin.write(self._initial_input)
                await stdin.drain()
            if not self._keep_stdin_open:
                stdin.close()
        except (BrokenPipeError, ConnectionResetError) as e:
            # The exit status and stderr explain what happened
            logger.warning(f"Agent closed stdin before the request was written: {e}")

    async def _read_lines(self) -> AsyncIterator[str]:
        """Read stdout lines until EOF."""
        if not self._process or not self._process.stdout:
            raise CliConnectionError("Process not running")

        stdout = self._process.stdout
        while True:
            try:
                line = await stdout.readline()
            except ValueError as e:
                raise ProtocolError(f"Agent output line exceeds {STREAM_LIMIT} bytes") from e
            if not line:
                # EOF - process closed stdout
                break

            text = line.decode("utf-8", errors="replace").strip()
            if not text:
                continue
            logger.debug(f"[agent stdout] {text[:200]}")
            yield text

    async def _do_send_permission_response(self, outcome: PermissionOutcome) -> bool:
        stdin = self._process.stdin if self._process else None
        if not self._keep_stdin_open or stdin is None or stdin.is_closing():
            logger.debug(
                f"Permission response for {outcome.tool_use_id} not sent: stdin is closed"
            )
            return False

        line = json.dumps(outcome.to_record()) + "\n"
        try:
            stdin.write(line.encode("utf-8"))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise CliConnectionError(f"Failed to write permission response: {e}") from e
        return True

    async def _do_end_input(self) -> None:
        if self._process and self._process.stdin and not self._process.stdin.is_closing():
            self._process.stdin.close()

    async def _do_finish(self) -> None:
        """Wait for exit after stdout EOF and check the exit code."""
        if not self._process:
            raise CliConnectionError("Process not running")

        await self._do_end_input()
        returncode = await self._process.wait()
        if self._stderr_task:
            await self._stderr_task

        logger.info(f"Agent exited with code {returncode} (pid={self._process.pid})")
        if returncode != 0:
            raise ProcessError(returncode, self.stderr)

    async def _do_close(self) -> None:
        """Terminate the process: SIGTERM, grace period, then SIGKILL."""
        process = self._process
        if process is not None:
            await self._do_end_input()
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.terminate()
                try:
                    await asyncio.wait_for(process.wait(), timeout=self._terminate_grace_seconds)
                except TimeoutError:
                    logger.warning(
                        f"Agent did not exit within {self._terminate_grace_seconds}s, "
                        f"killing (pid={process.pid})"
                    )
                    with contextlib.suppress(ProcessLookupError):
                        process.kill()
                    await process.wait()
                logger.info(f"Agent terminated (pid={process.pid})")

        if self._stderr_task and not self._stderr_task.done():
            self._stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stderr_task

    async def _capture_stderr(self) -> None:
        if not self._process or not self._process.stderr:
            return

        while True:
            chunk = await self._process.stderr.read(4096)
            if not chunk:
                break
            self._stderr.append(chunk)
            logger.debug(f"[agent stderr] {chunk.decode('utf-8', errors='replace').rstrip()}")
