import logging
from typing import Optional

from app.models.chat import ConversationMessage
from app.services.firestore_service import TranscriptStore

logger = logging.getLogger(__name__)


def assemble_conversation(
    store: TranscriptStore,
    chat_id: str,
    user_message: str,
    history_limit: Optional[int] = None,
) -> list[ConversationMessage]:
    """
    Build the message list for a completion request.

    Reads the chat's stored history (oldest first, capped to the most recent
    ``history_limit`` messages when set, minus any leading tool results whose
    call fell outside the window), persists the new user message, and
    returns the history followed by that message. Store failures propagate as
    StoreUnavailable so a partial history is never submitted.
    """
    history = store.list_messages(chat_id, limit=history_limit or None)
    # A window that opens on tool results has lost the assistant call they answer.
    while history and history[0].role == "tool":
        history = history[1:]

    user = ConversationMessage(role="user", content=user_message)
    store.append_message(chat_id, user)

    messages = [
        ConversationMessage(role=m.role, content=m.content, tool_calls=m.tool_calls)
        for m in history
    ]
    messages.append(user)

    logger.info(
        "conversation_assembled",
        extra={"chat_id": chat_id, "history_count": len(history), "history_limit": history_limit},
    )
    return messages
