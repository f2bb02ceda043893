"""Decoding and encoding of stream-json records.

The agent CLI writes one JSON object per line. Conversation records
nest their payload under ``message``:

    {"type": "assistant", "message": {"content": [...], "model": "..."}}

Flat records (``content`` at the top level) are accepted as well.
Decoding is pure: no state survives between calls.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from ..errors import JsonDecodeError, ProtocolError
from .messages import (
    AssistantMessage,
    ContentBlock,
    Message,
    ResultMessage,
    StreamEvent,
    SystemMessage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)


def decode_line(line: str) -> Message:
    """Parse one line of agent output into a message."""
    try:
        record = json.loads(line)
    except json.JSONDecodeError as e:
        raise JsonDecodeError(line, e) from e
    return decode_record(record, raw=line)


def decode_record(record: Any, *, raw: str | None = None) -> Message:
    """Decode one parsed JSON value into a message.

    Args:
        record: The parsed JSON value
        raw: Original text of the record, attached to errors

    Raises:
        ProtocolError: Unknown message or content block type
        JsonDecodeError: Structurally invalid record
    """
    raw_text = raw if raw is not None else _dump(record)

    if not isinstance(record, dict):
        raise JsonDecodeError(raw_text, "record is not a JSON object")

    message_type = record.get("type")
    if not isinstance(message_type, str):
        raise JsonDecodeError(raw_text, "record has no 'type' field")

    decoder = _MESSAGE_DECODERS.get(message_type)
    if decoder is None:
        raise ProtocolError(f"unrecognized message type: {message_type!r}", raw_data=raw_text)

    try:
        return decoder(record)
    except ProtocolError as e:
        if e.raw_data is None:
            e.raw_data = raw_text
        raise
    except (ValidationError, TypeError, ValueError) as e:
        raise JsonDecodeError(raw_text, e) from e


def encode_message(message: Message) -> dict[str, Any]:
    """Encode a message into its nested stream-json record."""
    if isinstance(message, AssistantMessage):
        payload: dict[str, Any] = {
            "role": "assistant",
            "content": [_encode_block(block) for block in message.content],
        }
        if message.model is not None:
            payload["model"] = message.model
        if message.stop_reason is not None:
            payload["stop_reason"] = message.stop_reason
        return {"type": "assistant", "message": payload}

    if isinstance(message, UserMessage):
        return {
            "type": "user",
            "message": {
                "role": "user",
                "content": [_encode_block(block) for block in message.content],
            },
        }

    if isinstance(message, SystemMessage):
        record: dict[str, Any] = {"type": "system", "subtype": "init"}
        if message.session_id is not None:
            record["session_id"] = message.session_id
        if message.mcp_servers is not None:
            record["mcp_servers"] = [server.model_dump() for server in message.mcp_servers]
        return record

    if isinstance(message, ResultMessage):
        record = {
            "type": "result",
            "subtype": "error" if message.is_error else "success",
            "is_error": message.is_error,
            "usage": message.usage.model_dump(),
        }
        optional = {
            "session_id": message.session_id,
            "total_cost_usd": message.cost_usd,
            "duration_ms": message.duration_ms,
            "num_turns": message.num_turns,
            "result": message.result,
        }
        record.update({key: value for key, value in optional.items() if value is not None})
        return record

    if isinstance(message, StreamEvent):
        return {"type": "stream_event", "event": {**message.data, "type": message.event_type}}

    raise TypeError(f"Cannot encode {type(message).__name__}")


def encode_line(message: Message) -> str:
    """Encode a message as one line of stream-json (without newline)."""
    return json.dumps(encode_message(message), ensure_ascii=False)


# =============================================================================
# Message decoders
# =============================================================================


def _payload(record: dict[str, Any]) -> dict[str, Any]:
    """Return the dict holding content: the nested message or the record."""
    nested = record.get("message")
    if "content" not in record and isinstance(nested, dict):
        return nested
    return record


def _decode_assistant(record: dict[str, Any]) -> AssistantMessage:
    payload = _payload(record)
    return AssistantMessage(
        content=_decode_content(payload.get("content", [])),
        model=payload.get("model"),
        stop_reason=payload.get("stop_reason"),
    )


def _decode_user(record: dict[str, Any]) -> UserMessage:
    payload = _payload(record)
    return UserMessage(content=_decode_content(payload.get("content", [])))


def _decode_system(record: dict[str, Any]) -> SystemMessage:
    return SystemMessage.model_validate(
        {
            "session_id": record.get("session_id"),
            "mcp_servers": record.get("mcp_servers"),
        }
    )


def _decode_result(record: dict[str, Any]) -> ResultMessage:
    cost = record.get("total_cost_usd")
    if cost is None:
        cost = record.get("cost_usd")
    return ResultMessage.model_validate(
        {
            "usage": record.get("usage") or {},
            "session_id": record.get("session_id"),
            "cost_usd": cost,
            "duration_ms": record.get("duration_ms"),
            "num_turns": record.get("num_turns"),
            "is_error": record.get("is_error") or False,
            "result": record.get("result"),
        }
    )


def _decode_stream_event(record: dict[str, Any]) -> StreamEvent:
    event = record.get("event")
    if not isinstance(event, dict):
        raise ValueError("stream_event record has no 'event' object")
    return StreamEvent.model_validate(
        {
            "event_type": event.get("type"),
            "data": {key: value for key, value in event.items() if key != "type"},
        }
    )


_MESSAGE_DECODERS: dict[str, Callable[[dict[str, Any]], Message]] = {
    "assistant": _decode_assistant,
    "user": _decode_user,
    "system": _decode_system,
    "result": _decode_result,
    "stream_event": _decode_stream_event,
}


# =============================================================================
# Content block decoders
# =============================================================================


def _decode_content(content: Any) -> tuple[ContentBlock, ...]:
    if isinstance(content, str):
        return (TextBlock(text=content),)
    if not isinstance(content, list):
        raise ValueError(f"content must be a list, got {type(content).__name__}")
    return tuple(_decode_block(element) for element in content)


def _decode_block(element: Any) -> ContentBlock:
    if not isinstance(element, dict):
        raise ValueError(f"content block must be an object, got {type(element).__name__}")

    block_type = element.get("type")
    if block_type == "text":
        return TextBlock.model_validate({"text": element.get("text")})
    if block_type == "tool_use":
        return ToolUseBlock.model_validate(
            {
                "id": element.get("id"),
                "name": element.get("name"),
                "input": element.get("input", {}),
            }
        )
    if block_type == "tool_result":
        return ToolResultBlock.model_validate(
            {
                "tool_use_id": element.get("tool_use_id"),
                "content": _flatten_result_content(element.get("content")),
                "is_error": bool(element.get("is_error", False)),
            }
        )
    raise ProtocolError(f"unrecognized content block type: {block_type!r}")


def _flatten_result_content(content: Any) -> str:
    """Tool results carry either a string or a list of text parts."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, dict) and part.get("type") == "text":
                parts.append(str(part.get("text", "")))
            elif isinstance(part, str):
                parts.append(part)
        return "".join(parts)
    raise ValueError(f"tool_result content must be text, got {type(content).__name__}")


def _encode_block(block: ContentBlock) -> dict[str, Any]:
    return block.model_dump(mode="json")


def _dump(record: Any) -> str:
    try:
        return json.dumps(record)
    except (TypeError, ValueError):
        return repr(record)
