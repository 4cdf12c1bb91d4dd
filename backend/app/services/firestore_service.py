import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional, Protocol

from google.api_core import exceptions as gcp_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import firestore
from pydantic import ValidationError

from app.config import FIRESTORE_CHATS_COLLECTION, GOOGLE_CLOUD_PROJECT
from app.exceptions import ChatNotFound, MalformedRecord, StoreUnavailable
from app.models.chat import Chat, ConversationMessage, Message

logger = logging.getLogger(__name__)


class TranscriptStore(Protocol):
    """Append-only store of chats and their messages."""

    def create_chat(self) -> Chat:
        ...

    def list_chats(self) -> list[Chat]:
        """All chats, newest first."""
        ...

    def get_chat(self, chat_id: str) -> Optional[Chat]:
        ...

    def list_messages(self, chat_id: str, limit: Optional[int] = None) -> list[Message]:
        """Messages oldest first; with ``limit``, only the most recent ``limit``."""
        ...

    def append_message(self, chat_id: str, message: ConversationMessage) -> Message:
        ...

    def append_messages(self, chat_id: str, messages: list[ConversationMessage]) -> list[Message]:
        """Append several messages atomically, in the given order."""
        ...


# ── Helpers ────────────────────────────────────────────────────────────────────

@contextmanager
def _store_errors(operation: str, **context) -> Iterator[None]:
    try:
        yield
    except (gcp_exceptions.GoogleAPICallError, gcp_exceptions.RetryError, auth_exceptions.GoogleAuthError) as e:
        logger.error("store_operation_failed", extra={"operation": operation, "error": str(e), **context})
        raise StoreUnavailable(f"Transcript store {operation} failed", operation=operation) from e


def _message_to_row(message: ConversationMessage, now: datetime) -> dict:
    return {
        "role": message.role,
        "content": message.content,
        "toolCalls": [tc.model_dump() for tc in message.tool_calls] if message.tool_calls else None,
        "createdAt": now,
    }


def _row_to_message(chat_id: str, doc_id: str, data: Optional[dict]) -> Message:
    data = data or {}
    try:
        return Message(
            id=doc_id,
            chat_id=chat_id,
            role=data.get("role"),
            content=data.get("content"),
            tool_calls=data.get("toolCalls"),
            seq=data.get("seq"),
            created_at=data.get("createdAt"),
        )
    except ValidationError as e:
        logger.error("malformed_message_row", extra={"chat_id": chat_id, "message_id": doc_id, "error": str(e)})
        raise MalformedRecord(f"Message {doc_id} in chat {chat_id} is malformed") from e


def _row_to_chat(doc_id: str, data: Optional[dict]) -> Chat:
    data = data or {}
    try:
        return Chat(id=doc_id, created_at=data.get("createdAt"))
    except ValidationError as e:
        logger.error("malformed_chat_row", extra={"chat_id": doc_id, "error": str(e)})
        raise MalformedRecord(f"Chat {doc_id} is malformed") from e


@firestore.transactional
def _append_in_transaction(transaction, chat_ref, messages_ref, rows: list[dict]) -> list[tuple[str, dict]]:
    """Allocate consecutive ``seq`` values from the chat's counter and write the rows."""
    snapshot = chat_ref.get(transaction=transaction)
    if not snapshot.exists:
        raise ChatNotFound(f"Chat {chat_ref.id} not found")
    next_seq = (snapshot.to_dict() or {}).get("messageCount", 0)

    written = []
    for row in rows:
        ref = messages_ref.document()
        data = {**row, "seq": next_seq}
        transaction.set(ref, data)
        written.append((ref.id, data))
        next_seq += 1

    transaction.update(chat_ref, {"messageCount": next_seq})
    return written


# ── Firestore store ────────────────────────────────────────────────────────────

class FirestoreTranscriptStore:
    """Transcript store backed by ``chats/{chat_id}/messages/{message_id}``."""

    def __init__(self, client: Optional[firestore.Client] = None, collection: str = FIRESTORE_CHATS_COLLECTION):
        self._client = client
        self._collection = collection

    @property
    def _db(self) -> firestore.Client:
        if self._client is None:
            self._client = firestore.Client(project=GOOGLE_CLOUD_PROJECT)
        return self._client

    def _chats(self):
        return self._db.collection(self._collection)

    def _messages(self, chat_id: str):
        return self._chats().document(chat_id).collection("messages")

    # ── Chats ──────────────────────────────────────────────────────────────────

    def create_chat(self) -> Chat:
        chat_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        with _store_errors("create_chat", chat_id=chat_id):
            self._chats().document(chat_id).set({"createdAt": now, "messageCount": 0})
        logger.info("chat_created", extra={"chat_id": chat_id})
        return Chat(id=chat_id, created_at=now)

    def list_chats(self) -> list[Chat]:
        with _store_errors("list_chats"):
            docs = self._chats().order_by("createdAt", direction=firestore.Query.DESCENDING).get()
        return [_row_to_chat(d.id, d.to_dict()) for d in docs]

    def get_chat(self, chat_id: str) -> Optional[Chat]:
        with _store_errors("get_chat", chat_id=chat_id):
            doc = self._chats().document(chat_id).get()
        if not doc.exists:
            return None
        return _row_to_chat(doc.id, doc.to_dict())

    # ── Messages ───────────────────────────────────────────────────────────────

    def list_messages(self, chat_id: str, limit: Optional[int] = None) -> list[Message]:
        with _store_errors("list_messages", chat_id=chat_id):
            col = self._messages(chat_id)
            if limit:
                # newest N, then flip back to conversation order
                docs = list(col.order_by("seq", direction=firestore.Query.DESCENDING).limit(limit).get())
                docs.reverse()
            else:
                docs = col.order_by("seq").get()
        return [_row_to_message(chat_id, d.id, d.to_dict()) for d in docs]

    def append_message(self, chat_id: str, message: ConversationMessage) -> Message:
        return self.append_messages(chat_id, [message])[0]

    def append_messages(self, chat_id: str, messages: list[ConversationMessage]) -> list[Message]:
        now = datetime.now(timezone.utc)
        rows = [_message_to_row(m, now) for m in messages]
        with _store_errors("append_messages", chat_id=chat_id, count=len(rows)):
            chat_ref = self._chats().document(chat_id)
            try:
                written = _append_in_transaction(self._db.transaction(), chat_ref, self._messages(chat_id), rows)
            except ValueError as e:
                # raised by the transaction wrapper once its commit attempts are exhausted
                logger.error("store_transaction_exhausted", extra={"chat_id": chat_id, "error": str(e)})
                raise StoreUnavailable("Transcript store append_messages failed", operation="append_messages") from e

        logger.info(
            "messages_written",
            extra={"chat_id": chat_id, "roles": [m.role for m in messages]},
        )
        return [_row_to_message(chat_id, doc_id, data) for doc_id, data in written]
