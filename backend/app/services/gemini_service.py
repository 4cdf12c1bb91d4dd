import logging
import uuid
from typing import AsyncGenerator, AsyncIterator, Iterator, Optional, Protocol, Sequence

from google import genai
from google.genai import types

from app.config import GEMINI_API_KEY, GEMINI_MODEL, GEMINI_TEMPERATURE, GOOGLE_CLOUD_PROJECT, VERTEX_AI_LOCATION
from app.exceptions import ProviderError
from app.models.chat import ConversationMessage
from app.models.stream import Chunk, ContentChunk, TerminalChunk, ToolCallChunk, ToolCallRequest

logger = logging.getLogger(__name__)


class CompletionProvider(Protocol):
    def stream_completion(
        self,
        system_prompt: str,
        messages: Sequence[ConversationMessage],
        tool_schemas: Sequence[types.FunctionDeclaration],
    ) -> AsyncIterator[Chunk]:
        """Lazy, single-consumer chunk stream ending with a TerminalChunk."""
        ...


def _make_client() -> genai.Client:
    # Vertex AI Express: API key + vertexai=True routes to the Vertex endpoint.
    # Without a key, fall back to Vertex AI ADC.
    if GEMINI_API_KEY:
        return genai.Client(vertexai=True, api_key=GEMINI_API_KEY)
    return genai.Client(
        vertexai=True,
        project=GOOGLE_CLOUD_PROJECT,
        location=VERTEX_AI_LOCATION,
    )


# ── History Reconstruction ─────────────────────────────────────────────────────

def _build_contents(messages: Sequence[ConversationMessage]) -> list[types.Content]:
    """Convert provider-neutral messages into Gemini Content objects."""
    contents = []
    for msg in messages:
        if msg.role == "user":
            contents.append(types.Content(
                role="user",
                parts=[types.Part.from_text(text=msg.content or "")],
            ))
        elif msg.role == "assistant":
            parts = []
            if msg.content:
                parts.append(types.Part.from_text(text=msg.content))
            for tc in msg.tool_calls or []:
                parts.append(types.Part.from_function_call(name=tc.name, args=tc.arguments))
            if parts:
                contents.append(types.Content(role="model", parts=parts))
        elif msg.role == "tool":
            parts = []
            for tc in msg.tool_calls or []:
                response = {"error": tc.result} if tc.error else {"result": tc.result}
                parts.append(types.Part.from_function_response(name=tc.name, response=response))
            if parts:
                contents.append(types.Content(role="user", parts=parts))
    return contents


# ── Chunk Classification ───────────────────────────────────────────────────────

def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"


def _chunks_from_response(response: types.GenerateContentResponse) -> Iterator[Chunk]:
    """Split one streamed response into content and tool-call chunks, in part order."""
    if not response.candidates:
        return
    candidate = response.candidates[0]
    if not candidate.content or not candidate.content.parts:
        return

    for part in candidate.content.parts:
        if part.function_call:
            fc = part.function_call
            yield ToolCallChunk(tool_call=ToolCallRequest(
                id=fc.id or _new_call_id(),
                name=fc.name,
                arguments=dict(fc.args) if fc.args else {},
            ))
        elif part.text and not part.thought:
            yield ContentChunk(text=part.text)


def _finish_reason(response: types.GenerateContentResponse) -> Optional[str]:
    if not response.candidates or response.candidates[0].finish_reason is None:
        return None
    reason = response.candidates[0].finish_reason
    return getattr(reason, "value", str(reason))


# ── Provider ───────────────────────────────────────────────────────────────────

class GeminiCompletionProvider:
    """Streams Gemini completions as classified chunks."""

    def __init__(
        self,
        client: Optional[genai.Client] = None,
        model: str = GEMINI_MODEL,
        temperature: float = GEMINI_TEMPERATURE,
    ):
        self._client = client
        self._model = model
        self._temperature = temperature

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = _make_client()
        return self._client

    async def stream_completion(
        self,
        system_prompt: str,
        messages: Sequence[ConversationMessage],
        tool_schemas: Sequence[types.FunctionDeclaration],
    ) -> AsyncGenerator[Chunk, None]:
        config = types.GenerateContentConfig(
            system_instruction=system_prompt,
            tools=[types.Tool(function_declarations=list(tool_schemas))] if tool_schemas else None,
            temperature=self._temperature,
        )
        logger.info(
            "gemini_stream_started",
            extra={"model": self._model, "message_count": len(messages)},
        )

        try:
            stream = await self.client.aio.models.generate_content_stream(
                model=self._model,
                contents=_build_contents(messages),
                config=config,
            )
        except Exception as e:
            logger.error("gemini_stream_open_failed", extra={"model": self._model, "error": str(e)})
            raise ProviderError("The language model could not be reached.") from e

        finish_reason = None
        try:
            async for response in stream:
                finish_reason = _finish_reason(response) or finish_reason
                for chunk in _chunks_from_response(response):
                    yield chunk
        except Exception as e:
            logger.error("gemini_stream_interrupted", extra={"model": self._model, "error": str(e)})
            raise ProviderError("The language model stream was interrupted.") from e
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        yield TerminalChunk(finish_reason=finish_reason)
