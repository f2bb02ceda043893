"""Scenario control endpoints for mock mode.

Endpoints:
- GET    /api/mock/status             - Mock mode and default scenario
- GET    /api/mock/scenarios          - Registered scenarios
- GET    /api/mock/mappings           - Prompt pattern mappings
- POST   /api/mock/scenario           - Set default or map a pattern
- DELETE /api/mock/scenario/{pattern} - Remove a pattern mapping
- POST   /api/mock/reset              - Restore built-in defaults
"""

from __future__ import annotations

import json
import logging

from pydantic import BaseModel, ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..errors import ScenarioNotFoundError
from ..scenarios import ScenarioRegistry

logger = logging.getLogger(__name__)


class SetScenarioRequest(BaseModel):
    """Request to set the default scenario or map a pattern to one."""

    scenario_id: str
    pattern: str | None = None


def _registry(request: Request) -> ScenarioRegistry:
    return request.app.state.scenario_registry


def _error(message: str, code: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message, "code": code}, status_code=status_code)


async def get_status(request: Request) -> JSONResponse:
    """Report mock mode and the current default scenario."""
    registry = _registry(request)
    return JSONResponse(
        {
            "mock_mode": bool(getattr(request.app.state, "mock_mode", False)),
            "default_scenario_id": registry.default_scenario_id,
            "available_scenarios": [s.id for s in registry.scenarios()],
        }
    )


async def list_scenarios(request: Request) -> JSONResponse:
    """List registered scenarios."""
    return JSONResponse([s.to_dict() for s in _registry(request).scenarios()])


async def list_mappings(request: Request) -> JSONResponse:
    """List prompt pattern mappings in match order."""
    return JSONResponse([m.to_dict() for m in _registry(request).mappings()])


async def set_scenario(request: Request) -> JSONResponse:
    """Set the default scenario, or map a pattern when one is given.

    Body: {"scenario_id": "error", "pattern": "bug"}
    """
    try:
        body = await request.json()
        req = SetScenarioRequest.model_validate(body)
    except (json.JSONDecodeError, ValidationError) as e:
        return _error(f"Invalid request: {e}", "INVALID_REQUEST", 400)

    registry = _registry(request)
    try:
        if req.pattern:
            registry.map_pattern(req.pattern, req.scenario_id)
            message = f"Pattern '{req.pattern}' mapped to scenario '{req.scenario_id}'"
        else:
            registry.set_default(req.scenario_id)
            message = f"Default scenario set to '{req.scenario_id}'"
    except ScenarioNotFoundError as e:
        return _error(str(e), "SCENARIO_NOT_FOUND", 400)
    except ValueError as e:
        return _error(str(e), "INVALID_PATTERN", 400)

    return JSONResponse({"success": True, "message": message})


async def remove_mapping(request: Request) -> JSONResponse:
    """Remove a pattern mapping. Unknown patterns are not an error."""
    pattern = request.path_params["pattern"]
    removed = _registry(request).remove_mapping(pattern)
    return JSONResponse({"success": True, "removed": removed})


async def reset_registry(request: Request) -> JSONResponse:
    """Restore built-in scenarios and the default; clear mappings."""
    registry = _registry(request)
    registry.reset()
    return JSONResponse({"success": True, "default_scenario_id": registry.default_scenario_id})


scenario_routes = [
    Route("/api/mock/status", get_status, methods=["GET"]),
    Route("/api/mock/scenarios", list_scenarios, methods=["GET"]),
    Route("/api/mock/mappings", list_mappings, methods=["GET"]),
    Route("/api/mock/scenario", set_scenario, methods=["POST"]),
    Route("/api/mock/scenario/{pattern:path}", remove_mapping, methods=["DELETE"]),
    Route("/api/mock/reset", reset_registry, methods=["POST"]),
]
