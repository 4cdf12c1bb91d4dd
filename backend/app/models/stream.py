import json
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from app.models.chat import ConversationMessage, ToolCallData


class ToolCallRequest(BaseModel):
    id: str
    name: str
    arguments: dict = Field(default_factory=dict)

    def to_data(self) -> ToolCallData:
        return ToolCallData(id=self.id, name=self.name, arguments=self.arguments)


# ── Provider chunks ────────────────────────────────────────────────────────────
# A provider stream is a finite sequence of chunks that always ends with an
# explicit TerminalChunk; running out of chunks without one is a provider error.

class ContentChunk(BaseModel):
    kind: Literal["content"] = "content"
    text: str


class ToolCallChunk(BaseModel):
    kind: Literal["tool_call"] = "tool_call"
    tool_call: ToolCallRequest


class TerminalChunk(BaseModel):
    kind: Literal["terminal"] = "terminal"
    finish_reason: Optional[str] = None


Chunk = Union[ContentChunk, ToolCallChunk, TerminalChunk]


class ToolResult(BaseModel):
    tool_call_id: str
    name: str
    role: Literal["tool"] = "tool"
    content: str  # JSON document
    arguments: dict = Field(default_factory=dict)
    error: Optional[str] = None  # None, "unknown_capability" or "capability_error"

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_message(self) -> ConversationMessage:
        return ConversationMessage(
            role="tool",
            content=self.content,
            tool_calls=[
                ToolCallData(
                    id=self.tool_call_id,
                    name=self.name,
                    arguments=self.arguments,
                    result=self.content,
                    error=self.error,
                )
            ],
        )


# ── Client events ──────────────────────────────────────────────────────────────

EventType = Literal["content", "tool_calls", "done", "error"]


class StreamEvent(BaseModel):
    type: EventType
    payload: dict

    def to_sse(self) -> str:
        return f"event: {self.type}\ndata: {json.dumps(self.payload)}\n\n"
