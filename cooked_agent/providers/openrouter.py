import os
import json
from typing import AsyncIterator, Optional, List, Dict, Any

import httpx

from cooked_agent import config
from cooked_agent.errors import GatewayError
from .base import ModelGateway


class OpenRouterGateway(ModelGateway):
    """OpenAI-compatible chat completions over OpenRouter."""

    provider_name: str = "openrouter"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or os.getenv("AI_MODEL", "").strip() or "openrouter/auto")
        api_key = os.getenv("OPENROUTER_API_KEY", "").strip()
        if not api_key:
            raise RuntimeError("OPENROUTER_API_KEY is required for OpenRouter provider")
        self._api_key = api_key
        self._url = config.OPENROUTER_BASE_URL
        self._timeout = config.openrouter_timeout_seconds()
        # Origin metadata (optional but recommended by OpenRouter)
        self._referer = config.PUBLIC_APP_ORIGIN or "http://localhost:5173"
        self._title = config.OPENROUTER_APP_TITLE or "AmICooked Agent API"

    def _headers(self, request_id: Optional[str], stream: bool) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "User-Agent": "cooked-agent-api/0.1.0",
            # Optional metadata for OpenRouter analytics
            "HTTP-Referer": self._referer,
            "X-Title": self._title,
        }
        if stream:
            headers["Accept"] = "text/event-stream"
        if request_id:
            headers["X-Request-Id"] = request_id
        return headers

    def _payload(self, prompt: str, system: Optional[str], model: Optional[str], stream: bool) -> Dict[str, Any]:
        messages: List[Dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return {
            "model": model or self.model,
            "stream": stream,
            "messages": messages,
        }

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        model: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> str:
        payload = self._payload(prompt, system, model, stream=False)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, headers=self._headers(request_id, stream=False), json=payload)
                if resp.status_code >= 400:
                    raise GatewayError(f"OpenRouter error {resp.status_code}: {resp.text}", status_code=resp.status_code)
                data = resp.json()
        except GatewayError:
            raise
        except Exception as e:
            raise GatewayError(f"OpenRouter request failed: {type(e).__name__}: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise GatewayError("OpenRouter response missing choices[0].message.content") from e
        return content if isinstance(content, str) else ""

    async def stream_chat(
        self,
        prompt: str,
        system: Optional[str] = None,
        model: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> AsyncIterator[str]:
        payload = self._payload(prompt, system, model, stream=True)
        # Use a short-lived AsyncClient per request to ensure proper cleanup
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                async with client.stream("POST", self._url, headers=self._headers(request_id, stream=True), json=payload) as resp:
                    if resp.status_code >= 400:
                        text = await resp.aread()
                        raise GatewayError(f"OpenRouter error {resp.status_code}: {text!r}", status_code=resp.status_code)
                    async for line in resp.aiter_lines():
                        if not line:
                            continue
                        # SSE comment or keepalive
                        if line.startswith(":"):
                            continue
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:"):].strip()
                        if not data:
                            continue
                        if data == "[DONE]":
                            break
                        try:
                            obj = json.loads(data)
                        except ValueError:
                            # If we can't parse JSON, skip the line
                            continue
                        choices = obj.get("choices") if isinstance(obj, dict) else None
                        if not choices or not isinstance(choices[0], dict):
                            continue
                        delta = choices[0].get("delta") or {}
                        token = delta.get("content") if isinstance(delta, dict) else None
                        if token is None:
                            # Some providers use different field names
                            token = choices[0].get("text") or ""
                        if token:
                            yield token
        except GatewayError:
            raise
        except Exception as e:
            # Connect, timeout and mid-stream read failures
            raise GatewayError(f"OpenRouter stream failed: {type(e).__name__}: {e}") from e
