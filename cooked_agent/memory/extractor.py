"""Distill a finished conversation into long-term memory items.

Runs detached from the user-facing turn: `schedule` returns immediately and
the job's failures are logged and counted, never raised.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Mapping, Optional, Set

from cooked_agent import config, metrics
from cooked_agent.errors import DocumentStoreError, ExtractionError
from cooked_agent.extraction import ResponseExtractor
from cooked_agent.instructions import EXTRACTION_INSTRUCTIONS
from cooked_agent.logs import get_logger, log_event
from cooked_agent.plans import PlanCapability
from cooked_agent.providers.base import ModelGateway
from .short_term import AgentMemory
from .store import MemoryStore
from .types import MemoryItem

logger = get_logger("memory.extractor")


def items_from_payload(raw: Mapping[str, Any], source: str = "conversation") -> List[MemoryItem]:
    """Map ``{goals, insights, summary}`` to typed items; blanks are skipped."""
    items: List[MemoryItem] = []
    for key, kind in (("goals", "goal"), ("insights", "insight")):
        values = raw.get(key)
        if not isinstance(values, list):
            continue
        for v in values:
            if isinstance(v, str) and v.strip():
                items.append(MemoryItem(type=kind, content=v, meta={"source": source}))
    summary = raw.get("summary")
    if isinstance(summary, str) and summary.strip():
        items.append(MemoryItem(type="summary", content=summary, meta={"source": source}))
    return items


class MemoryExtractor:
    def __init__(
        self,
        gateway: ModelGateway,
        store: MemoryStore,
        extractor: Optional[ResponseExtractor] = None,
        model: Optional[str] = None,
        enabled: Optional[bool] = None,
    ):
        self.gateway = gateway
        self.store = store
        self.extractor = extractor or ResponseExtractor()
        self.model = model
        self.enabled = config.MEMORY_EXTRACTION_ENABLED if enabled is None else enabled
        self._tasks: Set[asyncio.Task] = set()

    def eligible(self, plan: PlanCapability, memory: AgentMemory) -> bool:
        return self.enabled and plan.memory and memory.memory_enabled and len(memory.messages) > 0

    async def extract(
        self,
        uid: str,
        plan: PlanCapability,
        history: str,
        model: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> List[MemoryItem]:
        """Run one extraction over an already formatted history. Never raises."""
        try:
            text = await self.gateway.generate(
                f"# CONVERSATION\n{history}\n\nExtract the memory JSON now.",
                system=EXTRACTION_INSTRUCTIONS,
                model=model or self.model,
                request_id=request_id,
            )
            raw = self.extractor.extract_object(text)
            if raw is None:
                raise ExtractionError("memory extraction response had no JSON object")
            items = items_from_payload(raw)
            if items and await self.store.add_memory_items(uid, plan, items) is None:
                raise DocumentStoreError("agent state could not be read; extracted items were not saved")
            metrics.MEMORY_EXTRACTION_TOTAL.labels(outcome="ok").inc()
            log_event(logger, "memory_extraction_complete", uid=uid, count=len(items), requestId=request_id)
            return items
        except Exception as e:
            metrics.MEMORY_EXTRACTION_TOTAL.labels(outcome="error").inc()
            log_event(
                logger,
                "memory_extraction_error",
                level=logging.WARNING,
                uid=uid,
                error=type(e).__name__,
                message=str(e)[:512],
                requestId=request_id,
            )
            return []

    def schedule(
        self,
        uid: str,
        plan: PlanCapability,
        memory: AgentMemory,
        model: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> Optional[asyncio.Task]:
        """Start a detached extraction over a snapshot of the current history.

        Returns None when the preconditions do not hold. The task is kept in
        ``pending`` until it finishes.
        """
        if not self.eligible(plan, memory):
            metrics.MEMORY_EXTRACTION_TOTAL.labels(outcome="skipped").inc()
            return None
        history = memory.get_formatted_history()
        task = asyncio.create_task(self.extract(uid, plan, history, model=model, request_id=request_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> Set[asyncio.Task]:
        return set(self._tasks)

    async def drain(self, cancel: bool = False) -> None:
        tasks = list(self._tasks)
        if cancel:
            for t in tasks:
                t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
