from functools import lru_cache

from app.services.firestore_service import FirestoreTranscriptStore, TranscriptStore
from app.services.gemini_service import CompletionProvider, GeminiCompletionProvider


@lru_cache
def get_store() -> TranscriptStore:
    """FastAPI dependency for the transcript store. Override in tests."""
    return FirestoreTranscriptStore()


@lru_cache
def get_provider() -> CompletionProvider:
    """FastAPI dependency for the completion provider. Override in tests."""
    return GeminiCompletionProvider()
