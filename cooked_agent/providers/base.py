from __future__ import annotations

import abc
import inspect
import time
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Union

from cooked_agent import metrics

# Receives each streamed fragment in arrival order; may be sync or async.
TokenSink = Callable[[str], Union[None, Awaitable[None]]]


class ModelGateway(abc.ABC):
    """Abstract chat-completion backend.

    Implementations send a (system, user) prompt pair and return raw text,
    either in one piece (`complete`) or as streamed fragments (`stream_chat`,
    yielding tokens without SSE framing).
    """

    provider_name: str = "unknown"

    def __init__(self, model: Optional[str] = None):
        self.model = model

    @abc.abstractmethod
    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        model: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> str:
        ...

    @abc.abstractmethod
    async def stream_chat(
        self,
        prompt: str,
        system: Optional[str] = None,
        model: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> AsyncIterator[str]:
        ...

    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        *,
        model: Optional[str] = None,
        sink: Optional[TokenSink] = None,
        request_id: Optional[str] = None,
    ) -> str:
        """Return the full response text.

        With a sink, the response is streamed and every fragment is forwarded
        to it; the returned text is the in-order concatenation of those
        fragments, so both modes yield the same final string.
        """
        mode = "stream" if sink is not None else "complete"
        t0 = time.perf_counter()
        outcome = "error"
        try:
            if sink is None:
                text = await self.complete(prompt, system=system, model=model, request_id=request_id)
            else:
                parts: List[str] = []
                async for token in self.stream_chat(prompt, system=system, model=model, request_id=request_id):
                    parts.append(token)
                    res = sink(token)
                    if inspect.isawaitable(res):
                        await res
                text = "".join(parts)
            outcome = "ok"
            return text
        finally:
            try:
                metrics.LLM_REQUESTS_TOTAL.labels(provider=self.provider_name, mode=mode, outcome=outcome).inc()
                metrics.LLM_REQUEST_SECONDS.labels(provider=self.provider_name, mode=mode).observe(time.perf_counter() - t0)
            except Exception:
                pass
