"""Typed message protocol spoken by the agent CLI.

Messages are decoded from stream-json lines into a closed set of
pydantic models; see messages.py for the variants and decoder.py for
the wire mapping.
"""

from .decoder import decode_line, decode_record, encode_line, encode_message
from .messages import (
    AssistantMessage,
    ContentBlock,
    ContentBlockType,
    McpServerStatus,
    Message,
    MessageType,
    ResultMessage,
    StreamEvent,
    SystemMessage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
    UserMessage,
)

__all__ = [
    # Messages
    "Message",
    "MessageType",
    "AssistantMessage",
    "UserMessage",
    "SystemMessage",
    "ResultMessage",
    "StreamEvent",
    "McpServerStatus",
    "Usage",
    # Content blocks
    "ContentBlock",
    "ContentBlockType",
    "TextBlock",
    "ToolUseBlock",
    "ToolResultBlock",
    # Wire mapping
    "decode_line",
    "decode_record",
    "encode_line",
    "encode_message",
]
