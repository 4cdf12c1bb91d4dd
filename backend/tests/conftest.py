"""Shared pytest fixtures."""

import pytest
from fastapi.testclient import TestClient

from app.dependencies import get_provider, get_store
from app.main import app
from helpers import InMemoryTranscriptStore, ScriptedProvider, text_chunks


@pytest.fixture
def store() -> InMemoryTranscriptStore:
    return InMemoryTranscriptStore()


@pytest.fixture
def chat_id(store: InMemoryTranscriptStore) -> str:
    return store.create_chat().id


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider(text_chunks("Hello"))


@pytest.fixture
def client(store: InMemoryTranscriptStore, provider: ScriptedProvider):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_provider] = lambda: provider
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
