import logging
from enum import Enum
from typing import AsyncGenerator, AsyncIterator, Callable

from starlette.concurrency import run_in_threadpool

from app.exceptions import ChatServiceError, ProviderError
from app.models.chat import ConversationMessage
from app.models.stream import Chunk, StreamEvent, TerminalChunk, ToolCallRequest, ToolResult
from app.services.firestore_service import TranscriptStore
from app.services.tools_service import dispatch_tool_calls

logger = logging.getLogger(__name__)

Dispatcher = Callable[[list[ToolCallRequest]], list[ToolResult]]


class RelayState(str, Enum):
    OPEN = "open"
    STREAMING = "streaming"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"


async def _release(chunks: AsyncIterator[Chunk]) -> None:
    aclose = getattr(chunks, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.warning("provider_stream_close_failed", extra={"error": str(e)})


class StreamRelay:
    """
    Turns one provider chunk stream into client events for one request.

    Content fragments are forwarded as they arrive and accumulated; tool calls
    are forwarded and collected for dispatch. On the terminal chunk the tool
    calls are dispatched, the assistant reply and tool results are written in
    a single batch, and a ``done`` event closes the stream. Any failure ends
    the stream with one ``error`` event and nothing is written.

    Single use: one instance per streaming request.
    """

    def __init__(self, store: TranscriptStore, chat_id: str, dispatcher: Dispatcher = dispatch_tool_calls):
        self._store = store
        self._chat_id = chat_id
        self._dispatcher = dispatcher
        self.state = RelayState.OPEN
        self._fragments: list[str] = []
        self._tool_calls: list[ToolCallRequest] = []

    @property
    def tool_call_in_progress(self) -> bool:
        return bool(self._tool_calls)

    async def relay(self, chunks: AsyncIterator[Chunk]) -> AsyncGenerator[StreamEvent, None]:
        if self.state is not RelayState.OPEN:
            raise RuntimeError("StreamRelay has already been used")
        self.state = RelayState.STREAMING

        try:
            terminal = None
            async for chunk in chunks:
                if chunk.kind == "content":
                    if not chunk.text:
                        continue
                    self._fragments.append(chunk.text)
                    yield StreamEvent(type="content", payload={"content": chunk.text})
                elif chunk.kind == "tool_call":
                    self._tool_calls.append(chunk.tool_call)
                    yield StreamEvent(type="tool_calls", payload={"tool_calls": [chunk.tool_call.model_dump()]})
                elif chunk.kind == "terminal":
                    terminal = chunk
                    break

            if terminal is None:
                raise ProviderError("Completion stream ended without a terminal chunk")

            self.state = RelayState.CLOSING
            done = await self._close(terminal)
            self.state = RelayState.CLOSED
            yield done

        except ChatServiceError as e:
            self.state = RelayState.FAILED
            logger.error(
                "stream_failed",
                extra={"chat_id": self._chat_id, "code": e.code, "error": str(e)},
                exc_info=True,
            )
            yield StreamEvent(type="error", payload={"message": e.message, "code": e.code})
        except Exception as e:
            self.state = RelayState.FAILED
            logger.error("stream_failed", extra={"chat_id": self._chat_id, "error": str(e)}, exc_info=True)
            yield StreamEvent(
                type="error",
                payload={"message": "An error occurred while processing your request.", "code": "internal_error"},
            )
        finally:
            if self.state is not RelayState.CLOSED:
                # also covers client disconnects, which arrive as cancellation / generator close
                if self.state is not RelayState.FAILED:
                    logger.info("stream_abandoned", extra={"chat_id": self._chat_id, "state": self.state.value})
                self.state = RelayState.FAILED
            self._fragments.clear()
            self._tool_calls.clear()
            await _release(chunks)

    async def _close(self, terminal: TerminalChunk) -> StreamEvent:
        text = "".join(self._fragments)
        tool_calls = list(self._tool_calls)

        results: list[ToolResult] = []
        if tool_calls:
            results = await run_in_threadpool(self._dispatcher, tool_calls)

        assistant = ConversationMessage(
            role="assistant",
            content=None if tool_calls and not text else text,
            tool_calls=[tc.to_data() for tc in tool_calls] or None,
        )
        await run_in_threadpool(
            self._store.append_messages,
            self._chat_id,
            [assistant, *(r.to_message() for r in results)],
        )

        logger.info(
            "stream_closed",
            extra={
                "chat_id": self._chat_id,
                "finish_reason": terminal.finish_reason,
                "content_length": len(text),
                "tool_calls": [tc.name for tc in tool_calls],
            },
        )

        payload: dict = {"content": text}
        if results:
            payload["tool_results"] = [
                r.model_dump(include={"tool_call_id", "name", "content", "error"}) for r in results
            ]
        return StreamEvent(type="done", payload=payload)
