from __future__ import annotations

from collections import deque
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from cooked_agent import config
from .types import ConversationMessage, MemoryItem, Role, utc_now_iso

# Long-term memory buckets in render order: (item type, heading)
BUCKET_ORDER: Tuple[Tuple[str, str], ...] = (
    ("goal", "Goals"),
    ("insight", "Insights"),
    ("action", "Actions"),
    ("summary", "Past Conversation Summaries"),
    ("preference", "Preferences"),
    ("skill", "Skills"),
    ("feedback", "Feedback"),
    ("milestone", "Milestones"),
    ("context", "Context"),
)


class AgentMemory:
    """Short-term conversation window plus a reference to long-term items.

    The message buffer keeps the most recent ``limit`` messages and evicts
    the oldest first. ``long_term`` is the list owned by MemoryStore; it is
    shared, not copied.
    """

    def __init__(self, limit: Optional[int] = None, long_term: Optional[List[MemoryItem]] = None):
        self.limit = max(1, limit or config.SHORT_TERM_MEMORY_LIMIT)
        self._messages: Deque[ConversationMessage] = deque(maxlen=self.limit)
        self.long_term: List[MemoryItem] = long_term if long_term is not None else []
        self.memory_enabled = True
        self.user_context: Optional[Dict[str, Any]] = None
        self.previous_analysis: Optional[Dict[str, Any]] = None

    @property
    def messages(self) -> List[ConversationMessage]:
        return list(self._messages)

    def add_message(self, role: Role, content: str) -> ConversationMessage:
        msg = ConversationMessage(role=role, content=content)
        self._messages.append(msg)
        return msg

    def load_messages(self, messages: Iterable[Union[ConversationMessage, Mapping[str, Any]]]) -> None:
        """Replace the buffer with persisted messages; only the last ``limit`` are kept."""
        self._messages.clear()
        for m in messages:
            msg = m if isinstance(m, ConversationMessage) else ConversationMessage.from_dict(m)
            if msg is not None:
                self._messages.append(msg)

    def clear_history(self) -> None:
        self._messages.clear()

    def get_formatted_history(self) -> str:
        return "\n\n".join(f"{m.role.upper()}: {m.content}" for m in self._messages)

    def set_context(
        self,
        metrics: Optional[Mapping[str, Any]],
        profile: Optional[Mapping[str, Any]],
        analysis: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.user_context = {
            "metrics": dict(metrics or {}),
            "profile": dict(profile or {}),
            "analysis": dict(analysis) if analysis else None,
            "timestamp": utc_now_iso(),
        }

    def set_analysis(self, analysis: Optional[Mapping[str, Any]]) -> None:
        if self.user_context is not None:
            self.user_context["analysis"] = dict(analysis) if analysis else None

    def set_previous_analysis(self, analysis: Mapping[str, Any]) -> None:
        prev = dict(analysis)
        prev.setdefault("timestamp", utc_now_iso())
        self.previous_analysis = prev

    def format_long_term(self) -> str:
        """Bullet lists per non-empty bucket, in BUCKET_ORDER."""
        if not self.long_term:
            return ""
        buckets: Dict[str, List[str]] = {}
        for item in self.long_term:
            buckets.setdefault(item.type, []).append(item.content)
        blocks = []
        for kind, heading in BUCKET_ORDER:
            entries = buckets.get(kind)
            if entries:
                blocks.append(f"## {heading}\n" + "\n".join(f"- {c}" for c in entries))
        if not blocks:
            return ""
        return "# LONG-TERM MEMORY (what you remember about this user)\n\n" + "\n\n".join(blocks)

    def summary(self) -> Dict[str, Any]:
        return {
            "messageCount": len(self._messages),
            "hasContext": self.user_context is not None,
            "hasPreviousAnalysis": self.previous_analysis is not None,
            "lastActivity": self._messages[-1].timestamp if self._messages else None,
            "longTermCount": len(self.long_term),
            "memoryEnabled": self.memory_enabled,
        }
