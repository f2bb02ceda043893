"""Transports that supply raw agent output to a session.

- ProcessTransport: runs the agent CLI as a subprocess
- ScriptedTransport: replays a registered scenario
"""

from .base import AgentTransport, BaseAgentTransport, TransportState
from .command import build_arguments, build_initial_payload, build_mcp_config
from .locator import default_search_paths, find_cli
from .process import ProcessTransport, StderrBuffer
from .scripted import ScriptedTransport

__all__ = [
    "AgentTransport",
    "BaseAgentTransport",
    "TransportState",
    "ProcessTransport",
    "ScriptedTransport",
    "StderrBuffer",
    "build_arguments",
    "build_initial_payload",
    "build_mcp_config",
    "default_search_paths",
    "find_cli",
]
