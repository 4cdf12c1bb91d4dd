import logging
from contextlib import aclosing
from typing import AsyncGenerator, AsyncIterator

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from app.config import HISTORY_LIMIT, SYSTEM_PROMPT
from app.dependencies import get_provider, get_store
from app.exceptions import ChatNotFound
from app.models.chat import (
    ChatListResponse,
    ChatMessageResponse,
    ChatResponse,
    Message,
    SubmitToolResultsRequest,
)
from app.models.stream import Chunk, ToolResult
from app.services.conversation_service import assemble_conversation
from app.services.firestore_service import TranscriptStore
from app.services.gemini_service import CompletionProvider
from app.services.stream_relay import StreamRelay
from app.services.tools_service import TOOL_DECLARATIONS

logger = logging.getLogger(__name__)
router = APIRouter()


def _message_response(m: Message) -> ChatMessageResponse:
    return ChatMessageResponse(
        id=m.id,
        role=m.role,
        content=m.content,
        tool_calls=m.tool_calls,
        created_at=m.created_at,
    )


async def _require_chat(store: TranscriptStore, chat_id: str) -> None:
    chat = await run_in_threadpool(store.get_chat, chat_id)
    if not chat:
        raise ChatNotFound("Chat not found")


async def _sse_stream(relay: StreamRelay, chunks: AsyncIterator[Chunk]) -> AsyncGenerator[str, None]:
    # closing this generator also closes the relay and the provider stream
    async with aclosing(relay.relay(chunks)) as events:
        async for event in events:
            yield event.to_sse()


@router.post("", response_model=ChatResponse, status_code=201)
async def create_chat(store: TranscriptStore = Depends(get_store)):
    chat = await run_in_threadpool(store.create_chat)
    return ChatResponse(id=chat.id, created_at=chat.created_at)


@router.get("", response_model=ChatListResponse)
async def list_chats(store: TranscriptStore = Depends(get_store)):
    chats = await run_in_threadpool(store.list_chats)
    return ChatListResponse(chats=[ChatResponse(id=c.id, created_at=c.created_at) for c in chats])


@router.get("/stream")
async def stream_chat(
    message: str = Query(..., min_length=1),
    chat_id: str = Query(..., alias="chatId"),
    store: TranscriptStore = Depends(get_store),
    provider: CompletionProvider = Depends(get_provider),
):
    """
    Stream the assistant's reply as server-sent events.

    Events: ``content`` per text fragment, ``tool_calls`` per tool call, then
    either ``done`` with the full reply or a single ``error``. Store failures
    while loading the conversation are reported as a plain HTTP error before
    the stream opens.
    """
    await _require_chat(store, chat_id)
    messages = await run_in_threadpool(assemble_conversation, store, chat_id, message, HISTORY_LIMIT)

    relay = StreamRelay(store, chat_id)
    chunks = provider.stream_completion(SYSTEM_PROMPT, messages, TOOL_DECLARATIONS)

    return StreamingResponse(
        _sse_stream(relay, chunks),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/{chat_id}/messages", response_model=list[ChatMessageResponse])
async def get_messages(chat_id: str, store: TranscriptStore = Depends(get_store)):
    await _require_chat(store, chat_id)
    messages = await run_in_threadpool(store.list_messages, chat_id)
    return [_message_response(m) for m in messages]


@router.post("/{chat_id}/tool-results", response_model=list[ChatMessageResponse], status_code=201)
async def submit_tool_results(
    chat_id: str,
    body: SubmitToolResultsRequest,
    store: TranscriptStore = Depends(get_store),
):
    """Persist tool results resolved outside the server (e.g. by the client) as tool messages."""
    await _require_chat(store, chat_id)
    results = [
        ToolResult(
            tool_call_id=r.tool_call_id,
            name=r.name,
            arguments=r.arguments,
            content=r.content,
            error=r.error,
        )
        for r in body.results
    ]
    stored = await run_in_threadpool(store.append_messages, chat_id, [r.to_message() for r in results])
    logger.info("tool_results_submitted", extra={"chat_id": chat_id, "count": len(stored)})
    return [_message_response(m) for m in stored]
