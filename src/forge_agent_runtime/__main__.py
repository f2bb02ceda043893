"""Allow running with ``python -m forge_agent_runtime``."""

from .cli import main

main()
