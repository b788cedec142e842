from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional

from cooked_agent import config
from cooked_agent.instructions import (
    AGENT_NAME_MAX_LENGTH,
    CUSTOM_PERSONALITY_ID,
    CUSTOM_PERSONALITY_MAX_LENGTH,
)

Role = Literal["user", "assistant"]

MemoryType = Literal[
    "insight",
    "summary",
    "goal",
    "action",
    "preference",
    "skill",
    "feedback",
    "milestone",
    "context",
]

MEMORY_TYPES = (
    "insight",
    "summary",
    "goal",
    "action",
    "preference",
    "skill",
    "feedback",
    "milestone",
    "context",
)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ConversationMessage:
    role: Role
    content: str
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> Optional["ConversationMessage"]:
        role = obj.get("role")
        content = obj.get("content")
        if role not in ("user", "assistant") or not isinstance(content, str):
            return None
        return cls(role=role, content=content, timestamp=str(obj.get("timestamp") or utc_now_iso()))


@dataclass
class MemoryItem:
    type: MemoryType
    content: str
    meta: Dict[str, Any] = field(default_factory=dict)
    createdAt: str = field(default_factory=utc_now_iso)

    def __post_init__(self):
        self.content = str(self.content).strip()[: config.MEMORY_ITEM_MAX_LENGTH]
        if not isinstance(self.meta, dict):
            self.meta = {}

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "content": self.content, "meta": dict(self.meta), "createdAt": self.createdAt}

    @classmethod
    def from_dict(cls, obj: Any) -> Optional["MemoryItem"]:
        """Validate a stored or caller-supplied item; None when unusable."""
        if not isinstance(obj, Mapping):
            return None
        kind = obj.get("type")
        content = obj.get("content")
        if kind not in MEMORY_TYPES or content is None or not str(content).strip():
            return None
        return cls(
            type=kind,
            content=str(content),
            meta=obj.get("meta") if isinstance(obj.get("meta"), dict) else {},
            createdAt=str(obj.get("createdAt") or utc_now_iso()),
        )


@dataclass
class AgentIdentity:
    name: str = ""
    personality: str = ""
    customPersonality: Optional[str] = None
    icon: Optional[str] = None

    def __post_init__(self):
        self.name = (self.name or "").strip()[:AGENT_NAME_MAX_LENGTH]
        if self.customPersonality is not None:
            self.customPersonality = self.customPersonality.strip()[:CUSTOM_PERSONALITY_MAX_LENGTH]

    @property
    def is_custom(self) -> bool:
        return self.personality == CUSTOM_PERSONALITY_ID

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"name": self.name, "personality": self.personality}
        if self.customPersonality is not None:
            out["customPersonality"] = self.customPersonality
        if self.icon is not None:
            out["icon"] = self.icon
        return out

    @classmethod
    def from_dict(cls, obj: Any) -> Optional["AgentIdentity"]:
        if not isinstance(obj, Mapping):
            return None
        custom = obj.get("customPersonality")
        icon = obj.get("icon")
        return cls(
            name=str(obj.get("name") or ""),
            personality=str(obj.get("personality") or ""),
            customPersonality=custom if isinstance(custom, str) else None,
            icon=icon if isinstance(icon, str) else None,
        )


@dataclass
class AgentState:
    memory: List[MemoryItem] = field(default_factory=list)
    memoryEnabled: bool = True
    identity: Optional[AgentIdentity] = None
    updatedAt: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "memory": [m.to_dict() for m in self.memory],
            "memoryEnabled": self.memoryEnabled,
        }
        if self.identity is not None:
            out["identity"] = self.identity.to_dict()
        if self.updatedAt:
            out["updatedAt"] = self.updatedAt
        return out

    @classmethod
    def from_dict(cls, obj: Optional[Mapping[str, Any]]) -> "AgentState":
        if not obj:
            return cls()
        raw_memory = obj.get("memory")
        items = [MemoryItem.from_dict(m) for m in raw_memory] if isinstance(raw_memory, list) else []
        enabled = obj.get("memoryEnabled")
        return cls(
            memory=[m for m in items if m is not None],
            memoryEnabled=enabled if isinstance(enabled, bool) else True,
            identity=AgentIdentity.from_dict(obj.get("identity")),
            updatedAt=obj.get("updatedAt") if isinstance(obj.get("updatedAt"), str) else None,
        )
