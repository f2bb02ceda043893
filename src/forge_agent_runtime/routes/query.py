"""Query endpoint.

Endpoints:
- POST /api/query - Run one agent session and stream its messages

The session runs through the application's shared AgentClient, so in
mock mode the scenario chosen by /api/mock/* decides what is replayed.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator

from pydantic import BaseModel, ValidationError, field_validator
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from ..client import AgentClient
from ..errors import AgentError
from ..protocol.decoder import encode_line

logger = logging.getLogger(__name__)


class QueryRequest(BaseModel):
    """Prompt to run as a new session."""

    prompt: str

    @field_validator("prompt")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("prompt must not be empty")
        return value


async def messages_to_ndjson(client: AgentClient, prompt: str) -> AsyncIterator[bytes]:
    """Run a session and encode each message as one NDJSON line.

    A failed session ends the stream with an error record instead of
    breaking the response mid-body.
    """
    try:
        async for message in client.query_stream(prompt):
            yield (encode_line(message) + "\n").encode("utf-8")
    except AgentError as e:
        logger.info(f"Query session failed: {e}")
        error = {"type": "error", "error": str(e), "code": type(e).__name__}
        yield (json.dumps(error) + "\n").encode("utf-8")


async def run_query(request: Request) -> Response:
    """Run a prompt and stream the session as newline-delimited JSON.

    Body: {"prompt": "fix the failing test"}
    """
    try:
        body = await request.json()
        req = QueryRequest.model_validate(body)
    except (json.JSONDecodeError, ValidationError) as e:
        return JSONResponse(
            {"error": f"Invalid request: {e}", "code": "INVALID_REQUEST"}, status_code=400
        )

    client: AgentClient = request.app.state.agent_client
    return StreamingResponse(
        messages_to_ndjson(client, req.prompt),
        media_type="application/x-ndjson; charset=utf-8",
    )


query_routes = [
    Route("/api/query", run_query, methods=["POST"]),
]
