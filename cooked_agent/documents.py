"""Per-user document storage.

Documents are JSON objects addressed by slash paths such as
``users/{uid}/agent/state``. Backends provide get/set/merge/delete with
per-document atomicity only.
"""
import abc
import asyncio
import copy
import os
from typing import Any, Dict, Optional

import httpx

from cooked_agent import config
from cooked_agent.errors import DocumentStoreError


def agent_state_path(uid: str) -> str:
    return f"users/{uid}/agent/state"


def chat_path(uid: str, chat_id: str) -> str:
    return f"users/{uid}/chats/{chat_id}"


class DocumentStore(abc.ABC):
    @abc.abstractmethod
    async def get(self, path: str) -> Optional[Dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        """Write a document. With ``merge`` only the given top-level fields are replaced."""
        ...

    @abc.abstractmethod
    async def delete(self, path: str) -> None:
        ...


class InMemoryDocumentStore(DocumentStore):
    """Process-local store; values are deep-copied in and out."""

    def __init__(self):
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def get(self, path: str) -> Optional[Dict[str, Any]]:
        doc = self._docs.get(path)
        return copy.deepcopy(doc) if doc is not None else None

    async def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        async with self._lock:
            incoming = copy.deepcopy(data)
            if merge and path in self._docs:
                self._docs[path].update(incoming)
            else:
                self._docs[path] = incoming

    async def delete(self, path: str) -> None:
        async with self._lock:
            self._docs.pop(path, None)


class ConvexDocumentStore(DocumentStore):
    """Documents kept behind Convex HTTP functions.

    Expects ``documents:get`` (query), ``documents:set`` and
    ``documents:remove`` (mutations) taking a ``path`` argument.
    """

    def __init__(self, base_url: str, timeout: Optional[float] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = config.CONVEX_TIMEOUT_SECONDS if timeout is None else timeout

    async def _call(self, kind: str, fn: str, args: Dict[str, Any]) -> Any:
        url = f"{self.base_url}/api/{kind}"
        payload = {"path": fn, "args": args, "format": "json"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(url, json=payload, headers={"Content-Type": "application/json"})
        except httpx.HTTPError as e:
            raise DocumentStoreError(f"Convex {kind} {fn} failed: {type(e).__name__}") from e
        if resp.status_code >= 400:
            raise DocumentStoreError(f"Convex {kind} {fn} error {resp.status_code}: {resp.text[:256]}")
        try:
            data = resp.json()
        except ValueError as e:
            raise DocumentStoreError(f"Convex {kind} {fn} returned non-JSON body") from e
        # { status: 'success', value: ... } shape from Convex HTTP
        if isinstance(data, dict) and data.get("status") == "error":
            raise DocumentStoreError(f"Convex {kind} {fn} error: {data.get('errorMessage') or 'unknown'}")
        return data.get("value") if isinstance(data, dict) else None

    async def get(self, path: str) -> Optional[Dict[str, Any]]:
        value = await self._call("query", "documents:get", {"path": path})
        return value if isinstance(value, dict) else None

    async def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        await self._call("mutation", "documents:set", {"path": path, "data": data, "merge": bool(merge)})

    async def delete(self, path: str) -> None:
        await self._call("mutation", "documents:remove", {"path": path})


def create_document_store() -> DocumentStore:
    base = (os.getenv("CONVEX_URL") or "").strip()
    if base:
        return ConvexDocumentStore(base)
    return InMemoryDocumentStore()
