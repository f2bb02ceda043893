"""Scripted scenarios and the registry that selects them.

A scenario is an ordered list of messages plus a fixed delay. The
registry maps prompt patterns to scenario ids; the first matching
pattern wins, otherwise the default scenario is used.

The registry is copy-on-write: every mutation builds a new immutable
snapshot under a lock and swaps it in, so a session resolving its
scenario always sees one consistent state.

Scenario files are YAML:

    default: quick-success
    scenarios:
      - id: lint
        description: Runs the linter
        delay_ms: 10
        messages:
          - {type: assistant, message: {content: [{type: text, text: "Linting"}]}}
          - {type: result, usage: {input_tokens: 10, output_tokens: 5}}
    mappings:
      - {pattern: "lint", scenario: lint}
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from .errors import ScenarioNotFoundError
from .protocol.decoder import decode_record
from .protocol.messages import (
    AssistantMessage,
    McpServerStatus,
    Message,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ToolUseBlock,
    Usage,
)

logger = logging.getLogger(__name__)

DEFAULT_SCENARIO_ID = "default"
SCENARIO_MODEL = "claude-sonnet-4-20250514"


@dataclass(frozen=True)
class Scenario:
    """A scripted session."""

    id: str
    messages: tuple[Message, ...]
    delay_ms: int = 100
    description: str = ""

    @property
    def message_count(self) -> int:
        return len(self.messages)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "delay_ms": self.delay_ms,
            "message_count": self.message_count,
        }


@dataclass(frozen=True)
class PatternMapping:
    """Prompt pattern (case-insensitive regex) routed to a scenario."""

    pattern: str
    scenario_id: str
    regex: re.Pattern[str] = field(compare=False, repr=False)

    def to_dict(self) -> dict[str, str]:
        return {"pattern": self.pattern, "scenario_id": self.scenario_id}


@dataclass(frozen=True)
class RegistrySnapshot:
    """Immutable registry state."""

    scenarios: Mapping[str, Scenario]
    mappings: tuple[PatternMapping, ...]
    default_id: str

    def resolve(self, prompt: str) -> Scenario:
        for mapping in self.mappings:
            if mapping.regex.search(prompt):
                return self.scenarios[mapping.scenario_id]
        return self.scenarios[self.default_id]


class ScenarioRegistry:
    """Thread-safe, injectable store of scenarios and prompt mappings."""

    def __init__(self, scenarios: Sequence[Scenario] | None = None) -> None:
        self._lock = threading.Lock()
        initial = builtin_scenarios() if scenarios is None else list(scenarios)
        if not any(s.id == DEFAULT_SCENARIO_ID for s in initial):
            initial = [*builtin_scenarios()[:1], *initial]
        self._snapshot = RegistrySnapshot(
            scenarios={s.id: s for s in initial},
            mappings=(),
            default_id=DEFAULT_SCENARIO_ID,
        )

    def snapshot(self) -> RegistrySnapshot:
        """Current state; later mutations do not affect it."""
        return self._snapshot

    @property
    def default_scenario_id(self) -> str:
        return self._snapshot.default_id

    def scenarios(self) -> list[Scenario]:
        return list(self._snapshot.scenarios.values())

    def mappings(self) -> list[PatternMapping]:
        return list(self._snapshot.mappings)

    def get(self, scenario_id: str) -> Scenario | None:
        return self._snapshot.scenarios.get(scenario_id)

    def resolve(self, prompt: str) -> Scenario:
        """Pick the scenario for a prompt: first matching pattern, else default."""
        scenario = self._snapshot.resolve(prompt)
        logger.debug(f"Prompt resolved to scenario {scenario.id}")
        return scenario

    def register(self, scenario: Scenario) -> None:
        """Add or replace a scenario."""
        with self._lock:
            scenarios = {**self._snapshot.scenarios, scenario.id: scenario}
            self._snapshot = replace(self._snapshot, scenarios=scenarios)
        logger.debug(f"Registered scenario {scenario.id}")

    def set_default(self, scenario_id: str) -> None:
        """Make ``scenario_id`` the fallback scenario.

        Raises:
            ScenarioNotFoundError: Unknown scenario id
        """
        with self._lock:
            self._require(scenario_id)
            if self._snapshot.default_id != scenario_id:
                self._snapshot = replace(self._snapshot, default_id=scenario_id)
        logger.info(f"Default scenario set to {scenario_id}")

    def map_pattern(self, pattern: str, scenario_id: str) -> None:
        """Route prompts matching ``pattern`` to ``scenario_id``.

        Re-mapping an existing pattern keeps its position.

        Raises:
            ScenarioNotFoundError: Unknown scenario id
            ValueError: Empty or invalid pattern
        """
        if not pattern:
            raise ValueError("Pattern must not be empty")
        try:
            regex = re.compile(pattern, re.IGNORECASE)
        except re.error as e:
            raise ValueError(f"Invalid pattern {pattern!r}: {e}") from e

        mapping = PatternMapping(pattern=pattern, scenario_id=scenario_id, regex=regex)
        with self._lock:
            self._require(scenario_id)
            mappings = list(self._snapshot.mappings)
            for index, existing in enumerate(mappings):
                if existing.pattern == pattern:
                    mappings[index] = mapping
                    break
            else:
                mappings.append(mapping)
            self._snapshot = replace(self._snapshot, mappings=tuple(mappings))
        logger.info(f"Mapped pattern {pattern!r} to scenario {scenario_id}")

    def remove_mapping(self, pattern: str) -> bool:
        """Remove a pattern mapping. Unknown patterns are a no-op."""
        with self._lock:
            mappings = tuple(m for m in self._snapshot.mappings if m.pattern != pattern)
            if len(mappings) == len(self._snapshot.mappings):
                return False
            self._snapshot = replace(self._snapshot, mappings=mappings)
        logger.info(f"Removed mapping for pattern {pattern!r}")
        return True

    def reset(self) -> None:
        """Restore built-in scenarios and the default; drop all mappings.

        Scenarios registered under other ids stay available.
        """
        with self._lock:
            scenarios = dict(self._snapshot.scenarios)
            scenarios.update({s.id: s for s in builtin_scenarios()})
            self._snapshot = RegistrySnapshot(
                scenarios=scenarios,
                mappings=(),
                default_id=DEFAULT_SCENARIO_ID,
            )
        logger.info("Scenario registry reset")

    def load_file(self, path: str | Path) -> list[Scenario]:
        """Register scenarios, default and mappings from a YAML file."""
        with open(path) as f:
            config = yaml.safe_load(f) or {}
        if not isinstance(config, dict):
            raise ValueError(f"Scenario file {path} must contain a mapping")

        loaded = [scenario_from_dict(entry) for entry in config.get("scenarios") or []]
        for scenario in loaded:
            self.register(scenario)

        for entry in config.get("mappings") or []:
            self.map_pattern(str(entry["pattern"]), str(entry["scenario"]))

        if default := config.get("default"):
            self.set_default(str(default))

        logger.info(f"Loaded {len(loaded)} scenarios from {path}")
        return loaded

    def _require(self, scenario_id: str) -> None:
        if scenario_id not in self._snapshot.scenarios:
            raise ScenarioNotFoundError(scenario_id)


def scenario_from_dict(data: Mapping[str, Any]) -> Scenario:
    """Build a scenario from plain data; messages use the wire format."""
    scenario_id = data.get("id")
    if not scenario_id:
        raise ValueError("Scenario entry requires an 'id'")
    return Scenario(
        id=str(scenario_id),
        description=str(data.get("description", "")),
        delay_ms=int(data.get("delay_ms", 100)),
        messages=tuple(decode_record(record) for record in data.get("messages") or []),
    )


# =============================================================================
# Built-in scenarios
# =============================================================================


def _system(session_id: str) -> SystemMessage:
    return SystemMessage(
        session_id=session_id,
        mcp_servers=(McpServerStatus(name="filesystem", status="connected"),),
    )


def _say(text: str, *tools: ToolUseBlock, stop_reason: str | None = None) -> AssistantMessage:
    return AssistantMessage(
        content=(TextBlock(text=text), *tools),
        model=SCENARIO_MODEL,
        stop_reason=stop_reason,
    )


def _result(
    session_id: str, usage: tuple[int, int], cost: float, duration_ms: int, turns: int
) -> ResultMessage:
    return ResultMessage(
        usage=Usage(input_tokens=usage[0], output_tokens=usage[1]),
        session_id=session_id,
        cost_usd=cost,
        duration_ms=duration_ms,
        num_turns=turns,
    )


def builtin_scenarios() -> list[Scenario]:
    """Scenarios every registry starts with."""
    return [
        Scenario(
            id=DEFAULT_SCENARIO_ID,
            description="Reads a file, edits it and reports success",
            delay_ms=150,
            messages=(
                _system("mock-session-default"),
                _say("I'll help you with this task. Let me start by analyzing the codebase."),
                _say(
                    "Let me read the relevant file first.",
                    ToolUseBlock(id="tool_01", name="Read", input={"file_path": "/src/example.ts"}),
                ),
                _say("I can see the file structure. Now I'll make the necessary changes."),
                _say(
                    "Updating the implementation.",
                    ToolUseBlock(
                        id="tool_02",
                        name="Edit",
                        input={
                            "file_path": "/src/example.ts",
                            "old_string": "const value = 1;",
                            "new_string": "const value = 2;",
                        },
                    ),
                ),
                _say("The changes have been applied successfully.", stop_reason="end_turn"),
                _result("mock-session-default", (1500, 500), 0.01, 5000, 3),
            ),
        ),
        Scenario(
            id="quick-success",
            description="Completes immediately",
            delay_ms=50,
            messages=(
                _system("mock-session-quick"),
                _say("Task completed successfully.", stop_reason="end_turn"),
                _result("mock-session-quick", (100, 20), 0.001, 500, 1),
            ),
        ),
        Scenario(
            id="error",
            description="Agent reports an error and stops",
            delay_ms=50,
            messages=(
                _system("mock-session-error"),
                _say(
                    "I encountered an error while trying to complete this task. "
                    "The file could not be found.",
                    stop_reason="error",
                ),
                _result("mock-session-error", (100, 30), 0.001, 200, 1),
            ),
        ),
        Scenario(
            id="long-running",
            description="Searches, reads and writes across several turns",
            delay_ms=200,
            messages=(
                _system("mock-session-long"),
                _say("This is a complex task. Let me break it down into steps."),
                _say(
                    "First, let me search for configuration files.",
                    ToolUseBlock(id="tool_01", name="Glob", input={"pattern": "**/*.config.ts"}),
                ),
                _say(
                    "Found the configuration. Reading the entry point.",
                    ToolUseBlock(id="tool_02", name="Read", input={"file_path": "/src/index.ts"}),
                ),
                _say(
                    "Creating the new feature module.",
                    ToolUseBlock(
                        id="tool_03",
                        name="Write",
                        input={
                            "file_path": "/src/new-feature.ts",
                            "content": "export const feature = () => 'ready';\n",
                        },
                    ),
                ),
                _say("All steps completed. The feature is in place.", stop_reason="end_turn"),
                _result("mock-session-long", (3000, 1000), 0.03, 15000, 5),
            ),
        ),
    ]
