import json

import pytest
from prometheus_client import REGISTRY

from cooked_agent.documents import InMemoryDocumentStore
from cooked_agent.errors import DocumentStoreError, GatewayError
from cooked_agent.memory import AgentMemory, MemoryExtractor, MemoryStore
from cooked_agent.memory.extractor import items_from_payload
from cooked_agent.plans import PLANS
from cooked_agent.providers.mock import MockGateway


def _count(outcome: str) -> float:
    return REGISTRY.get_sample_value("cooked_memory_extraction_total", {"outcome": outcome}) or 0.0


def _memory_with_turns() -> AgentMemory:
    mem = AgentMemory(limit=10)
    mem.add_message("user", "I want a backend internship by June.")
    mem.add_message("assistant", "Then ship a tested API first.")
    return mem


def test_items_from_payload_maps_and_skips_blanks():
    items = items_from_payload({"goals": ["Get hired", " "], "insights": ["Likes Go"], "summary": ""})
    assert [(i.type, i.content) for i in items] == [("goal", "Get hired"), ("insight", "Likes Go")]
    assert items[0].meta == {"source": "conversation"}


@pytest.mark.asyncio
async def test_scheduled_extraction_persists_items():
    docs = InMemoryDocumentStore()
    store = MemoryStore(docs, caller_id="u1")
    gw = MockGateway([json.dumps({"goals": ["Backend internship by June"], "insights": [], "summary": "Planned an API."})])
    ex = MemoryExtractor(gw, store, enabled=True)
    before = _count("ok")

    task = ex.schedule("u1", PLANS["student"], _memory_with_turns())
    assert task is not None
    items = await task

    assert [i.type for i in items] == ["goal", "summary"]
    state = await store.load_state("u1", PLANS["student"])
    assert [m.content for m in state.memory] == ["Backend internship by June", "Planned an API."]
    assert "USER: I want a backend internship by June." in gw.calls[0]["prompt"]
    assert _count("ok") == before + 1
    assert ex.pending == set()


@pytest.mark.asyncio
async def test_history_is_snapshotted_at_schedule_time():
    gw = MockGateway([json.dumps({"goals": [], "insights": [], "summary": "s"})])
    ex = MemoryExtractor(gw, MemoryStore(InMemoryDocumentStore(), caller_id="u1"), enabled=True)
    mem = _memory_with_turns()
    task = ex.schedule("u1", PLANS["pro"], mem)
    mem.add_message("user", "added after scheduling")
    await task
    assert "added after scheduling" not in gw.calls[0]["prompt"]


@pytest.mark.parametrize(
    "plan_id, enabled_flag, memory_enabled, with_turns",
    [
        ("free", True, True, True),
        ("student", False, True, True),
        ("student", True, False, True),
        ("student", True, True, False),
    ],
)
@pytest.mark.asyncio
async def test_schedule_skips_when_not_eligible(plan_id, enabled_flag, memory_enabled, with_turns):
    gw = MockGateway()
    ex = MemoryExtractor(gw, MemoryStore(InMemoryDocumentStore(), caller_id="u1"), enabled=enabled_flag)
    mem = _memory_with_turns() if with_turns else AgentMemory()
    mem.memory_enabled = memory_enabled
    before = _count("skipped")

    assert ex.schedule("u1", PLANS[plan_id], mem) is None
    assert gw.calls == []
    assert _count("skipped") == before + 1


@pytest.mark.asyncio
async def test_extraction_errors_are_logged_not_raised():
    store = MemoryStore(InMemoryDocumentStore(), caller_id="u1")
    before = _count("error")

    gw = MockGateway([GatewayError("down", status_code=503), "no json here"])
    ex = MemoryExtractor(gw, store, enabled=True)
    assert await ex.extract("u1", PLANS["student"], "USER: hi") == []
    assert await ex.extract("u1", PLANS["student"], "USER: hi") == []

    assert _count("error") == before + 2
    assert await store.load_state("u1", PLANS["student"]) is None


@pytest.mark.asyncio
async def test_drain_cancels_pending_jobs():
    gw = MockGateway(delay=0.05, chunk_size=1)
    ex = MemoryExtractor(gw, MemoryStore(InMemoryDocumentStore(), caller_id="u1"), enabled=True)
    task = ex.schedule("u1", PLANS["student"], _memory_with_turns())
    assert task in ex.pending
    await ex.drain(cancel=True)
    assert task.done()


@pytest.mark.asyncio
async def test_unreadable_state_counts_as_extraction_error():
    class UnreadableStore(InMemoryDocumentStore):
        async def get(self, path):
            raise DocumentStoreError("read timed out")

    docs = UnreadableStore()
    ex = MemoryExtractor(MockGateway(), MemoryStore(docs, caller_id="u1"), enabled=True)
    before = _count("error")

    items = await ex.extract("u1", PLANS["student"], "USER: I want a backend role.")

    assert items == []
    assert _count("error") == before + 1
    assert docs._docs == {}
