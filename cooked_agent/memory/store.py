from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

from cooked_agent import metrics
from cooked_agent.documents import DocumentStore, agent_state_path
from cooked_agent.logs import get_logger, log_event
from cooked_agent.plans import PlanCapability
from .types import AgentIdentity, AgentState, MemoryItem, utc_now_iso

logger = get_logger("memory.store")

ItemLike = Union[MemoryItem, Mapping[str, Any]]


def enforce_cap(memory: List[MemoryItem], plan: PlanCapability) -> List[MemoryItem]:
    """Keep the most recent items up to the plan cap."""
    cap = plan.effective_memory_cap
    if cap <= 0:
        return []
    if len(memory) <= cap:
        return list(memory)
    return list(memory[-cap:])


def _coerce_item(item: ItemLike) -> Optional[MemoryItem]:
    if isinstance(item, MemoryItem):
        return item
    return MemoryItem.from_dict(item)


class MemoryStore:
    """Plan-gated, owner-checked access to a user's persisted agent state.

    ``caller_id`` is the authenticated user making the request. Operations on
    any other user's record behave as if no record exists. Backend failures
    are logged and swallowed; callers always get a value back.
    """

    def __init__(self, documents: DocumentStore, caller_id: Optional[str]):
        self.documents = documents
        self.caller_id = caller_id

    def _owns(self, uid: Optional[str]) -> bool:
        return bool(uid) and uid == self.caller_id

    def _persist_error(self, op: str, uid: str, e: Exception) -> None:
        try:
            metrics.MEMORY_PERSIST_ERRORS_TOTAL.labels(op=op).inc()
        except Exception:
            pass
        log_event(
            logger,
            "memory_persist_error",
            level=logging.WARNING,
            op=op,
            uid=uid,
            error=type(e).__name__,
            message=str(e)[:512],
        )

    # ── read ──────────────────────────────────────────────────────────────

    async def _read_state(self, uid: str, plan: PlanCapability) -> Tuple[Optional[AgentState], bool]:
        """Return (state, ok); ok is False only when the backend read failed."""
        try:
            doc = await self.documents.get(agent_state_path(uid))
        except Exception as e:
            self._persist_error("load", uid, e)
            return None, False
        if doc is None:
            return None, True
        state = AgentState.from_dict(doc)
        if not plan.custom_identity:
            state.identity = None
        return state, True

    async def load_state(self, uid: str, plan: PlanCapability) -> Optional[AgentState]:
        if not plan.memory or not self._owns(uid):
            return None
        state, _ = await self._read_state(uid, plan)
        return state

    # ── write ─────────────────────────────────────────────────────────────

    async def save_state(
        self,
        uid: str,
        plan: PlanCapability,
        *,
        memory: Optional[List[MemoryItem]] = None,
        memory_enabled: Optional[bool] = None,
        identity: Optional[AgentIdentity] = None,
    ) -> bool:
        """Merge-write only the fields given; others stay as stored."""
        if not plan.memory or not self._owns(uid):
            return False
        to_save = {"updatedAt": utc_now_iso()}
        if memory is not None:
            to_save["memory"] = [m.to_dict() for m in enforce_cap(memory, plan)]
        if memory_enabled is not None:
            to_save["memoryEnabled"] = bool(memory_enabled)
        # Identity never reaches storage on plans without custom identity
        if identity is not None and plan.custom_identity:
            to_save["identity"] = identity.to_dict()
        try:
            await self.documents.set(agent_state_path(uid), to_save, merge=True)
        except Exception as e:
            self._persist_error("save", uid, e)
            return False
        return True

    async def save_identity(self, uid: str, plan: PlanCapability, identity: AgentIdentity) -> bool:
        if not plan.custom_identity or not self._owns(uid):
            return False
        try:
            await self.documents.set(
                agent_state_path(uid),
                {"identity": identity.to_dict(), "updatedAt": utc_now_iso()},
                merge=True,
            )
        except Exception as e:
            self._persist_error("save_identity", uid, e)
            return False
        return True

    # ── memory items ──────────────────────────────────────────────────────

    async def add_memory_items(
        self, uid: str, plan: PlanCapability, items: Iterable[ItemLike]
    ) -> Optional[List[MemoryItem]]:
        """Append items, cap oldest-first and persist in one write.

        On a plan without memory (or for another user's record) nothing is
        written and the visible prior list, which is empty, is returned. When
        the stored list cannot be read nothing is written and None is returned,
        so a failed read never overwrites the persisted memory.
        """
        if not plan.memory or not self._owns(uid):
            return []
        state, ok = await self._read_state(uid, plan)
        if not ok:
            return None
        current = state or AgentState()
        added = [i for i in (_coerce_item(x) for x in items) if i is not None]
        if not added:
            return list(current.memory)
        capped = enforce_cap(current.memory + added, plan)
        await self.save_state(uid, plan, memory=capped)
        return capped

    async def add_memory_item(self, uid: str, plan: PlanCapability, item: ItemLike) -> Optional[List[MemoryItem]]:
        return await self.add_memory_items(uid, plan, [item])

    async def clear_memory(self, uid: str, plan: PlanCapability) -> bool:
        if not plan.memory or not self._owns(uid):
            return False
        return await self.save_state(uid, plan, memory=[])

    async def set_memory_enabled(self, uid: str, plan: PlanCapability, enabled: bool) -> bool:
        if not plan.memory or not self._owns(uid):
            return False
        return await self.save_state(uid, plan, memory_enabled=enabled)

    async def delete_memory_item(self, uid: str, plan: PlanCapability, index: int) -> Optional[List[MemoryItem]]:
        if not plan.memory or not self._owns(uid):
            return []
        state, ok = await self._read_state(uid, plan)
        if not ok:
            return None
        memory = list((state or AgentState()).memory)
        if 0 <= index < len(memory):
            memory.pop(index)
            await self.save_state(uid, plan, memory=memory)
        return memory

    async def delete_state(self, uid: str) -> bool:
        """Remove the whole agent document (account wipe); not plan-gated."""
        if not self._owns(uid):
            return False
        try:
            await self.documents.delete(agent_state_path(uid))
        except Exception as e:
            self._persist_error("delete", uid, e)
            return False
        return True
