"""Process-wide runtime settings.

Settings come from environment variables:

    FORGE_AGENT_MOCK_MODE                 Replay scripted scenarios (1/true/yes)
    FORGE_AGENT_CLI_PATH                  Explicit agent executable
    FORGE_AGENT_PERMISSION_TIMEOUT_MS     Permission handler deadline
    FORGE_AGENT_TERMINATE_GRACE_SECONDS   Wait before killing the agent
    FORGE_AGENT_SCENARIOS_FILE            YAML file with extra scenarios
    FORGE_AGENT_LOG_LEVEL                 Logging level name
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TypeVar

from .protocols.permission import DEFAULT_PERMISSION_TIMEOUT_MS

ENV_PREFIX = "FORGE_AGENT_"
LOG_FORMAT = "%(levelname)s: %(name)s: %(message)s"

_TRUE_VALUES = ("1", "true", "yes")

Number = TypeVar("Number", int, float)


@dataclass
class RuntimeSettings:
    """Settings shared by every session in the process."""

    mock_mode: bool = False
    cli_path: str | None = None
    permission_timeout_ms: int = DEFAULT_PERMISSION_TIMEOUT_MS
    terminate_grace_seconds: float = 5.0
    scenarios_file: str | None = None
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RuntimeSettings:
        """Build settings from environment variables.

        Raises:
            ValueError: A numeric variable does not parse
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            value = env.get(f"{ENV_PREFIX}{name}", "").strip()
            return value or None

        settings = cls()
        settings.mock_mode = (get("MOCK_MODE") or "").lower() in _TRUE_VALUES
        settings.cli_path = get("CLI_PATH")
        settings.scenarios_file = get("SCENARIOS_FILE")

        if timeout := get("PERMISSION_TIMEOUT_MS"):
            settings.permission_timeout_ms = _parse(timeout, int, "PERMISSION_TIMEOUT_MS")
        if grace := get("TERMINATE_GRACE_SECONDS"):
            settings.terminate_grace_seconds = _parse(grace, float, "TERMINATE_GRACE_SECONDS")
        if level := get("LOG_LEVEL"):
            settings.log_level = level.upper()

        return settings


def _parse(value: str, kind: type[Number], name: str) -> Number:
    try:
        parsed = kind(value)
    except ValueError as e:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {value!r}") from e
    if parsed <= 0:
        raise ValueError(f"{ENV_PREFIX}{name} must be positive, got {value!r}")
    return parsed


def configure_logging(level: str | int = logging.WARNING) -> None:
    """Send log output to stderr; stdout stays free for command output."""
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
