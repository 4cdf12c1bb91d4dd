from pydantic import BaseModel, Field
from typing import Literal, Optional
from datetime import datetime

Role = Literal["user", "assistant", "tool"]


class ToolCallData(BaseModel):
    id: Optional[str] = None
    name: str
    arguments: dict = Field(default_factory=dict)
    result: Optional[str] = None
    error: Optional[str] = None


class ConversationMessage(BaseModel):
    """A role/content record as submitted to the completion provider."""

    role: Role
    content: Optional[str] = None  # None for pure tool-call messages
    tool_calls: Optional[list[ToolCallData]] = None


class Message(ConversationMessage):
    """A message row as stored in the transcript store."""

    id: str
    chat_id: str
    seq: int  # per-chat, store-assigned, monotonic
    created_at: datetime


class Chat(BaseModel):
    id: str
    created_at: datetime


# ── API schemas ────────────────────────────────────────────────────────────────

class ChatMessageResponse(BaseModel):
    id: str
    role: Role
    content: Optional[str] = None
    tool_calls: Optional[list[ToolCallData]] = None
    created_at: Optional[datetime] = None


class ChatResponse(BaseModel):
    id: str
    created_at: Optional[datetime] = None


class ChatListResponse(BaseModel):
    chats: list[ChatResponse]


class ToolResultIn(BaseModel):
    tool_call_id: str
    name: str
    content: str
    arguments: dict = Field(default_factory=dict)
    error: Optional[str] = None


class SubmitToolResultsRequest(BaseModel):
    results: list[ToolResultIn] = Field(min_length=1)
