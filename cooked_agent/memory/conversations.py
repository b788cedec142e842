from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Mapping, Optional

from cooked_agent import metrics
from cooked_agent.documents import DocumentStore, chat_path
from cooked_agent.logs import get_logger, log_event
from .types import ConversationMessage, Role, utc_now_iso

logger = get_logger("memory.conversations")

TITLE_MAX_LENGTH = 50


def chat_title(first_message: str) -> str:
    if len(first_message) > TITLE_MAX_LENGTH:
        return first_message[:TITLE_MAX_LENGTH] + "..."
    return first_message


class ConversationStore:
    """Persisted chats at ``users/{uid}/chats/{chatId}``; owner-checked like MemoryStore."""

    def __init__(self, documents: DocumentStore, caller_id: Optional[str]):
        self.documents = documents
        self.caller_id = caller_id

    def _owns(self, uid: Optional[str]) -> bool:
        return bool(uid) and uid == self.caller_id

    def _error(self, op: str, e: Exception, **fields: Any) -> None:
        try:
            metrics.MEMORY_PERSIST_ERRORS_TOTAL.labels(op=op).inc()
        except Exception:
            pass
        log_event(logger, "chat_persist_error", level=logging.WARNING, op=op, error=type(e).__name__, message=str(e)[:512], **fields)

    async def get_chat(self, uid: str, chat_id: str) -> Optional[Dict[str, Any]]:
        if not self._owns(uid) or not chat_id:
            return None
        try:
            doc = await self.documents.get(chat_path(uid, chat_id))
        except Exception as e:
            self._error("chat_load", e, chatId=chat_id)
            return None
        if doc is None:
            return None
        doc["id"] = chat_id
        return doc

    async def create_chat(
        self,
        uid: str,
        first_message: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> Optional[str]:
        if not self._owns(uid):
            return None
        chat_id = uuid.uuid4().hex
        now = utc_now_iso()
        doc = {
            "title": chat_title(first_message),
            "context": dict(context or {}),
            "createdAt": now,
            "updatedAt": now,
            "messages": [ConversationMessage(role="user", content=first_message).to_dict()],
        }
        try:
            await self.documents.set(chat_path(uid, chat_id), doc)
        except Exception as e:
            self._error("chat_create", e)
            return None
        return chat_id

    async def add_message(self, uid: str, chat_id: str, role: Role, content: str) -> bool:
        if not self._owns(uid) or not chat_id:
            return False
        path = chat_path(uid, chat_id)
        try:
            doc = await self.documents.get(path)
            if doc is None:
                log_event(logger, "chat_not_found", level=logging.WARNING, chatId=chat_id)
                return False
            messages = doc.get("messages") if isinstance(doc.get("messages"), list) else []
            messages.append(ConversationMessage(role=role, content=content).to_dict())
            await self.documents.set(path, {"messages": messages, "updatedAt": utc_now_iso()}, merge=True)
        except Exception as e:
            self._error("chat_append", e, chatId=chat_id)
            return False
        return True
