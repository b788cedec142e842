from .conversations import ConversationStore
from .extractor import MemoryExtractor
from .short_term import AgentMemory
from .store import MemoryStore, enforce_cap
from .types import AgentIdentity, AgentState, ConversationMessage, MemoryItem, MEMORY_TYPES

__all__ = [
    "AgentIdentity",
    "AgentMemory",
    "AgentState",
    "ConversationMessage",
    "ConversationStore",
    "MEMORY_TYPES",
    "MemoryExtractor",
    "MemoryItem",
    "MemoryStore",
    "enforce_cap",
]
