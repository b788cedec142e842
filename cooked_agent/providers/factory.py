import os
from typing import Optional

from cooked_agent.logs import get_logger, log_event
from .base import ModelGateway
from .mock import MockGateway

logger = get_logger("providers")


def _env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def get_gateway(provider: Optional[str] = None, model: Optional[str] = None) -> ModelGateway:
    """Return a model gateway based on env or explicit overrides.

    Env precedence:
      - AI_PROVIDER
      - defaults to 'mock'
    Model from AI_MODEL if not given.
    """
    prov = (provider or _env_str("AI_PROVIDER") or "mock").lower()
    mdl = model or _env_str("AI_MODEL") or None

    if prov in ("mock", "test"):
        return MockGateway(model=mdl)

    if prov in ("openrouter", "router"):
        try:
            from .openrouter import OpenRouterGateway
            return OpenRouterGateway(model=mdl)
        except Exception as e:
            # Fallback to mock if keys are not available
            log_event(logger, "gateway_fallback_mock", provider=prov, error=str(e))
            return MockGateway(model=mdl)

    # Unknown -> mock
    return MockGateway(model=mdl)
