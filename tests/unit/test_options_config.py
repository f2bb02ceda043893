"""Unit tests for session options and runtime settings."""

import pytest

from forge_agent_runtime.config import RuntimeSettings
from forge_agent_runtime.options import AgentOptions, InputFormat
from forge_agent_runtime.protocols.permission import DEFAULT_PERMISSION_TIMEOUT_MS


class TestAgentOptions:
    """Tests for AgentOptions."""

    def test_streaming_input(self) -> None:
        assert not AgentOptions().streaming_input
        assert AgentOptions(input_format=InputFormat.STREAM_JSON).streaming_input

    def test_merge_none_copies(self) -> None:
        """Merging nothing returns an equal copy."""
        base = AgentOptions(model="m")
        merged = base.merge(None)

        assert merged == base
        assert merged is not base

    def test_merge_overrides_non_defaults(self) -> None:
        """Only fields set on the override replace the base."""
        base = AgentOptions(model="base-model", max_turns=5, cli_path="/bin/agent")
        merged = base.merge(AgentOptions(model="other", permission_timeout_ms=1000))

        assert merged.model == "other"
        assert merged.max_turns == 5
        assert merged.cli_path == "/bin/agent"
        assert merged.permission_timeout_ms == 1000

    def test_merge_env_and_args(self) -> None:
        """env is merged by key and extra arguments are concatenated."""
        base = AgentOptions(env={"A": "1", "B": "1"}, additional_args=["--a"])
        merged = base.merge(AgentOptions(env={"B": "2"}, additional_args=["--b"]))

        assert merged.env == {"A": "1", "B": "2"}
        assert merged.additional_args == ["--a", "--b"]

    def test_merge_keeps_base_unchanged(self) -> None:
        base = AgentOptions(env={"A": "1"})
        base.merge(AgentOptions(env={"B": "2"}))

        assert base.env == {"A": "1"}


class TestRuntimeSettings:
    """Tests for environment-based settings."""

    def test_defaults(self) -> None:
        settings = RuntimeSettings.from_env({})

        assert settings.mock_mode is False
        assert settings.cli_path is None
        assert settings.permission_timeout_ms == DEFAULT_PERMISSION_TIMEOUT_MS
        assert settings.terminate_grace_seconds == 5.0
        assert settings.log_level == "WARNING"

    def test_from_env(self) -> None:
        """Every FORGE_AGENT_ variable is read."""
        settings = RuntimeSettings.from_env(
            {
                "FORGE_AGENT_MOCK_MODE": "true",
                "FORGE_AGENT_CLI_PATH": "/opt/agent",
                "FORGE_AGENT_PERMISSION_TIMEOUT_MS": "2500",
                "FORGE_AGENT_TERMINATE_GRACE_SECONDS": "0.5",
                "FORGE_AGENT_SCENARIOS_FILE": "scenarios.yaml",
                "FORGE_AGENT_LOG_LEVEL": "debug",
            }
        )

        assert settings.mock_mode is True
        assert settings.cli_path == "/opt/agent"
        assert settings.permission_timeout_ms == 2500
        assert settings.terminate_grace_seconds == 0.5
        assert settings.scenarios_file == "scenarios.yaml"
        assert settings.log_level == "DEBUG"

    @pytest.mark.parametrize("value", ["0", "1", "yes", "TRUE"])
    def test_mock_mode_values(self, value: str) -> None:
        expected = value != "0"
        assert RuntimeSettings.from_env({"FORGE_AGENT_MOCK_MODE": value}).mock_mode is expected

    @pytest.mark.parametrize("value", ["soon", "0", "-5"])
    def test_invalid_timeout(self, value: str) -> None:
        """Timeouts must be positive numbers."""
        with pytest.raises(ValueError, match="FORGE_AGENT_PERMISSION_TIMEOUT_MS"):
            RuntimeSettings.from_env({"FORGE_AGENT_PERMISSION_TIMEOUT_MS": value})

    def test_parsed_number_types(self) -> None:
        """The timeout is an integer and the grace period a float."""
        settings = RuntimeSettings.from_env(
            {
                "FORGE_AGENT_PERMISSION_TIMEOUT_MS": "750",
                "FORGE_AGENT_TERMINATE_GRACE_SECONDS": "2",
            }
        )

        assert type(settings.permission_timeout_ms) is int
        assert type(settings.terminate_grace_seconds) is float
        assert settings.terminate_grace_seconds == 2.0

    def test_fractional_timeout_rejected(self) -> None:
        with pytest.raises(ValueError, match="must be a number"):
            RuntimeSettings.from_env({"FORGE_AGENT_PERMISSION_TIMEOUT_MS": "1.5"})
