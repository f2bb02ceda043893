"""Message model for the agent stream-json protocol.

Content blocks and messages are closed unions discriminated by their
``type`` field. All models are frozen: a message never changes after
it has been decoded.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ContentBlockType(str, Enum):
    """Content block discriminants."""

    TEXT = "text"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"


class MessageType(str, Enum):
    """Top-level message discriminants."""

    ASSISTANT = "assistant"
    USER = "user"
    SYSTEM = "system"
    RESULT = "result"
    STREAM_EVENT = "stream_event"


# =============================================================================
# Content blocks
# =============================================================================


class TextBlock(BaseModel):
    """Plain text produced by the agent or the user."""

    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    """A request from the agent to run a named tool."""

    model_config = ConfigDict(frozen=True)

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: Any = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    """The outcome of a tool use, reported back to the agent."""

    model_config = ConfigDict(frozen=True)

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str = ""
    is_error: bool = False


ContentBlock = Annotated[
    TextBlock | ToolUseBlock | ToolResultBlock,
    Field(discriminator="type"),
]


def joined_text(content: Iterable[ContentBlock]) -> str:
    """Concatenate the text blocks of a message, in order."""
    return "".join(block.text for block in content if isinstance(block, TextBlock))


# =============================================================================
# Messages
# =============================================================================


class AssistantMessage(BaseModel):
    """One assistant turn."""

    model_config = ConfigDict(frozen=True)

    type: Literal["assistant"] = "assistant"
    content: tuple[ContentBlock, ...] = ()
    model: str | None = None
    stop_reason: str | None = None

    @property
    def text(self) -> str:
        return joined_text(self.content)

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [block for block in self.content if isinstance(block, ToolUseBlock)]


class UserMessage(BaseModel):
    """One user turn, usually carrying tool results."""

    model_config = ConfigDict(frozen=True)

    type: Literal["user"] = "user"
    content: tuple[ContentBlock, ...] = ()

    @property
    def text(self) -> str:
        return joined_text(self.content)


class McpServerStatus(BaseModel):
    """Connection status of an MCP server reported at session start."""

    model_config = ConfigDict(frozen=True)

    name: str
    status: str


class SystemMessage(BaseModel):
    """Session metadata, first message when present."""

    model_config = ConfigDict(frozen=True)

    type: Literal["system"] = "system"
    session_id: str | None = None
    mcp_servers: tuple[McpServerStatus, ...] | None = None


class Usage(BaseModel):
    """Token accounting for a finished session."""

    model_config = ConfigDict(frozen=True)

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_input_tokens: int = 0
    cache_creation_input_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class ResultMessage(BaseModel):
    """Terminal message of a well-formed session."""

    model_config = ConfigDict(frozen=True)

    type: Literal["result"] = "result"
    usage: Usage = Field(default_factory=Usage)
    session_id: str | None = None
    cost_usd: float | None = None
    duration_ms: int | None = None
    num_turns: int | None = None
    is_error: bool = False
    result: str | None = None


class StreamEvent(BaseModel):
    """Incremental update the host may ignore."""

    model_config = ConfigDict(frozen=True)

    type: Literal["stream_event"] = "stream_event"
    event_type: str
    data: dict[str, Any] = Field(default_factory=dict)


Message = Annotated[
    AssistantMessage | UserMessage | SystemMessage | ResultMessage | StreamEvent,
    Field(discriminator="type"),
]
