"""In-memory collaborators shared by the test modules."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Optional, Sequence

from app.exceptions import ChatNotFound, StoreUnavailable
from app.models.chat import Chat, ConversationMessage, Message
from app.models.stream import Chunk, ContentChunk, TerminalChunk, ToolCallChunk, ToolCallRequest

_EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


class InMemoryTranscriptStore:
    """TranscriptStore kept in dicts; ``fail_reads`` / ``fail_writes`` simulate outages."""

    def __init__(self) -> None:
        self.chats: dict[str, Chat] = {}
        self.messages: dict[str, list[Message]] = {}
        self.fail_reads = False
        self.fail_writes = False
        self._clock = 0

    def _now(self) -> datetime:
        self._clock += 1
        return _EPOCH + timedelta(seconds=self._clock)

    def create_chat(self) -> Chat:
        if self.fail_writes:
            raise StoreUnavailable("Transcript store create_chat failed")
        chat = Chat(id=str(uuid.uuid4()), created_at=self._now())
        self.chats[chat.id] = chat
        self.messages[chat.id] = []
        return chat

    def list_chats(self) -> list[Chat]:
        if self.fail_reads:
            raise StoreUnavailable("Transcript store list_chats failed")
        return sorted(self.chats.values(), key=lambda c: c.created_at, reverse=True)

    def get_chat(self, chat_id: str) -> Optional[Chat]:
        if self.fail_reads:
            raise StoreUnavailable("Transcript store get_chat failed")
        return self.chats.get(chat_id)

    def list_messages(self, chat_id: str, limit: Optional[int] = None) -> list[Message]:
        if self.fail_reads:
            raise StoreUnavailable("Transcript store list_messages failed")
        messages = list(self.messages.get(chat_id, []))
        return messages[-limit:] if limit else messages

    def append_message(self, chat_id: str, message: ConversationMessage) -> Message:
        return self.append_messages(chat_id, [message])[0]

    def append_messages(self, chat_id: str, messages: list[ConversationMessage]) -> list[Message]:
        if self.fail_writes:
            raise StoreUnavailable("Transcript store append_messages failed")
        if chat_id not in self.chats:
            raise ChatNotFound(f"Chat {chat_id} not found")
        stored = self.messages[chat_id]
        written = []
        for m in messages:
            row = Message(
                id=str(uuid.uuid4()),
                chat_id=chat_id,
                role=m.role,
                content=m.content,
                tool_calls=m.tool_calls,
                seq=len(stored),
                created_at=self._now(),
            )
            stored.append(row)
            written.append(row)
        return written

    def roles(self, chat_id: str) -> list[str]:
        return [m.role for m in self.messages[chat_id]]


class ScriptedStream:
    """Async chunk iterator that replays a script and records whether it was closed.

    An ``Exception`` instance in the script is raised when reached.
    """

    def __init__(self, script: Sequence[object]):
        self._script = list(script)
        self.closed = False
        self.consumed = 0

    def __aiter__(self) -> "ScriptedStream":
        return self

    async def __anext__(self) -> Chunk:
        if self.closed or self.consumed >= len(self._script):
            raise StopAsyncIteration
        item = self._script[self.consumed]
        self.consumed += 1
        if isinstance(item, Exception):
            raise item
        return item

    async def aclose(self) -> None:
        self.closed = True


class ScriptedProvider:
    """CompletionProvider returning one ScriptedStream per call."""

    def __init__(self, script: Sequence[object]):
        self.script = list(script)
        self.calls: list[dict] = []
        self.streams: list[ScriptedStream] = []

    def stream_completion(self, system_prompt, messages, tool_schemas) -> AsyncIterator[Chunk]:
        self.calls.append({
            "system_prompt": system_prompt,
            "messages": list(messages),
            "tool_schemas": list(tool_schemas),
        })
        stream = ScriptedStream(self.script)
        self.streams.append(stream)
        return stream


def text_chunks(*fragments: str) -> list[Chunk]:
    return [ContentChunk(text=f) for f in fragments] + [TerminalChunk(finish_reason="STOP")]


def tool_chunk(call_id: str, name: str, **arguments) -> ToolCallChunk:
    return ToolCallChunk(tool_call=ToolCallRequest(id=call_id, name=name, arguments=arguments))


def parse_sse(body: str) -> list[tuple[str, dict]]:
    """Parse an SSE body into (event, data) pairs."""
    events = []
    for frame in body.strip().split("\n\n"):
        if not frame:
            continue
        lines = dict(line.split(": ", 1) for line in frame.split("\n"))
        events.append((lines["event"], json.loads(lines["data"])))
    return events
