"""HTTP-level tests for the chat API."""

from __future__ import annotations

import pytest

from app.exceptions import ProviderError
from app.models.chat import ConversationMessage
from app.models.stream import ContentChunk, TerminalChunk
from app.routers.chat import _sse_stream
from app.services.stream_relay import RelayState, StreamRelay
from helpers import ScriptedStream, parse_sse, text_chunks, tool_chunk


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_create_and_list_chats_newest_first(client):
    first = client.post("/api/chat")
    second = client.post("/api/chat")

    assert first.status_code == 201
    chats = client.get("/api/chat").json()["chats"]
    assert [c["id"] for c in chats] == [second.json()["id"], first.json()["id"]]


def test_messages_for_unknown_chat_is_404(client):
    response = client.get("/api/chat/missing/messages")

    assert response.status_code == 404
    assert response.json() == {"detail": "Chat not found", "code": "chat_not_found"}


def test_message_ordering_round_trip(client, store, chat_id):
    store.append_message(chat_id, ConversationMessage(role="user", content="M1"))
    store.append_message(chat_id, ConversationMessage(role="assistant", content="M2"))

    body = client.get(f"/api/chat/{chat_id}/messages").json()

    assert [m["content"] for m in body] == ["M1", "M2"]
    assert [m["role"] for m in body] == ["user", "assistant"]


def test_apartment_search_scenario(client, store, provider, chat_id):
    text = "find me an apartment in Tokyo under ¥100,000/month"
    provider.script = text_chunks("Sure, ", "let me check.")

    response = client.get("/api/chat/stream", params={"chatId": chat_id, "message": text})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert parse_sse(response.text) == [
        ("content", {"content": "Sure, "}),
        ("content", {"content": "let me check."}),
        ("done", {"content": "Sure, let me check."}),
    ]
    assert [(m.role, m.content) for m in store.messages[chat_id]] == [
        ("user", text),
        ("assistant", "Sure, let me check."),
    ]
    submitted = provider.calls[0]["messages"]
    assert submitted == [ConversationMessage(role="user", content=text)]
    assert provider.calls[0]["tool_schemas"][0].name == "search_properties"


def test_follow_up_message_sends_prior_history(client, store, provider, chat_id):
    client.get("/api/chat/stream", params={"chatId": chat_id, "message": "hi"})
    client.get("/api/chat/stream", params={"chatId": chat_id, "message": "again"})

    history = [(m.role, m.content) for m in provider.calls[1]["messages"]]
    assert history == [("user", "hi"), ("assistant", "Hello"), ("user", "again")]


def test_provider_failure_ends_stream_with_error_event(client, store, provider, chat_id):
    provider.script = [ContentChunk(text="Sure, "), ProviderError("The language model stream was interrupted.")]

    response = client.get("/api/chat/stream", params={"chatId": chat_id, "message": "hi"})

    events = parse_sse(response.text)
    assert [t for t, _ in events] == ["content", "error"]
    assert store.roles(chat_id) == ["user"]


def test_tool_call_stream(client, store, provider, chat_id):
    provider.script = [
        tool_chunk("call_1", "search_properties", city="Tokyo", max_price=100000),
        TerminalChunk(finish_reason="STOP"),
    ]

    events = parse_sse(client.get("/api/chat/stream", params={"chatId": chat_id, "message": "flats?"}).text)

    assert [t for t, _ in events] == ["tool_calls", "done"]
    assert store.roles(chat_id) == ["user", "assistant", "tool"]

    body = client.get(f"/api/chat/{chat_id}/messages").json()
    assert body[1]["tool_calls"][0]["id"] == "call_1"
    assert body[2]["tool_calls"][0]["result"] == events[1][1]["tool_results"][0]["content"]


def test_stream_for_unknown_chat_is_404(client, provider):
    response = client.get("/api/chat/stream", params={"chatId": "missing", "message": "hi"})

    assert response.status_code == 404
    assert response.json()["code"] == "chat_not_found"
    assert provider.calls == []


def test_stream_requires_message(client, chat_id):
    assert client.get("/api/chat/stream", params={"chatId": chat_id, "message": ""}).status_code == 422


@pytest.mark.parametrize("flag", ["fail_reads", "fail_writes"])
def test_store_outage_before_stream_is_503(client, store, provider, chat_id, flag):
    # get_chat must succeed so the failure happens while assembling the conversation
    store.get_chat = lambda cid: store.chats.get(cid)
    setattr(store, flag, True)

    response = client.get("/api/chat/stream", params={"chatId": chat_id, "message": "hi"})

    assert response.status_code == 503
    assert response.json()["code"] == "store_unavailable"
    assert provider.calls == []


def test_submit_tool_results(client, store, chat_id):
    payload = {"results": [
        {"tool_call_id": "call_7", "name": "search_properties", "content": '{"count": 0}'},
    ]}

    response = client.post(f"/api/chat/{chat_id}/tool-results", json=payload)

    assert response.status_code == 201
    body = response.json()
    assert body[0]["role"] == "tool"
    assert body[0]["tool_calls"][0]["id"] == "call_7"
    assert store.roles(chat_id) == ["tool"]


def test_submit_tool_results_requires_results(client, chat_id):
    assert client.post(f"/api/chat/{chat_id}/tool-results", json={"results": []}).status_code == 422


def test_submit_tool_results_for_unknown_chat_is_404(client):
    payload = {"results": [{"tool_call_id": "call_1", "name": "search_properties", "content": "{}"}]}

    response = client.post("/api/chat/missing/tool-results", json=payload)

    assert response.status_code == 404
    assert response.json()["code"] == "chat_not_found"


@pytest.mark.asyncio
async def test_dropping_the_event_stream_releases_the_provider(store, chat_id):
    stream = ScriptedStream(text_chunks("first", "second"))
    relay = StreamRelay(store, chat_id)

    body = _sse_stream(relay, stream)
    first = await body.__anext__()
    await body.aclose()

    assert parse_sse(first) == [("content", {"content": "first"})]
    assert stream.closed
    assert relay.state is RelayState.FAILED
    assert store.messages[chat_id] == []
