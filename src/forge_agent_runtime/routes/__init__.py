"""HTTP routes."""

from .health import health_routes
from .query import query_routes
from .scenarios import scenario_routes

__all__ = ["health_routes", "query_routes", "scenario_routes"]
