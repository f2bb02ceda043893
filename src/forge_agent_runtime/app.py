"""Forge agent runtime HTTP application.

Route organization:
- /health - Health check
- /api/query - Run a session and stream its messages
- /api/mock/* - Scenario control (mock mode only)
"""

from __future__ import annotations

import logging

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Mount, Route

from .client import create_agent_client
from .config import RuntimeSettings
from .routes import health_routes, query_routes, scenario_routes
from .scenarios import ScenarioRegistry

logger = logging.getLogger(__name__)


def create_app(
    *,
    registry: ScenarioRegistry | None = None,
    settings: RuntimeSettings | None = None,
    enable_scenario_routes: bool | None = None,
) -> Starlette:
    """Create the runtime application.

    Args:
        registry: Scenario registry shared with the agent client; the
            configured scenarios file is loaded into it in mock mode
        settings: Runtime settings; read from the environment if omitted
        enable_scenario_routes: Force scenario routes on or off;
            defaults to settings.mock_mode

    Returns:
        Configured Starlette application
    """
    settings = settings or RuntimeSettings.from_env()
    registry = registry if registry is not None else ScenarioRegistry()
    agent_client = create_agent_client(settings, registry=registry)

    mount_scenarios = settings.mock_mode
    if enable_scenario_routes is not None:
        mount_scenarios = enable_scenario_routes

    routes: list[Route | Mount] = []
    routes.extend(health_routes)
    routes.extend(query_routes)
    if mount_scenarios:
        routes.extend(scenario_routes)

    # CORS middleware for local development
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=["http://localhost:*", "http://127.0.0.1:*"],
            allow_methods=["*"],
            allow_headers=["*"],
        ),
    ]

    app = Starlette(routes=routes, middleware=middleware)
    app.state.agent_client = agent_client
    app.state.scenario_registry = registry
    app.state.mock_mode = settings.mock_mode
    logger.debug(f"App created (scenario routes: {mount_scenarios})")
    return app
