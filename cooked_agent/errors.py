from typing import Any, Optional


class CookedAgentError(Exception):
    """Base class for errors raised by the agent core."""


class GatewayError(CookedAgentError, RuntimeError):
    """Transport failure talking to the model backend (network, HTTP status, bad envelope)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ExtractionError(CookedAgentError):
    """No usable JSON could be recovered from a model response."""


class ScoringFailed(ExtractionError):
    """Phase 1 produced no usable category scores, even after the targeted retry."""


class SynthesisFailed(ExtractionError):
    """Phase 2 narrative could not be parsed.

    ``scores`` holds the locked Phase 1 result so callers can retry Phase 2 alone.
    """

    def __init__(self, message: str, scores: Any = None):
        super().__init__(message)
        self.scores = scores


class RecommendationFailed(ExtractionError):
    """A skill's structured output could not be parsed."""


class AgentNotInitialized(CookedAgentError):
    """An analysis was requested before the agent was given user context."""


class DocumentStoreError(CookedAgentError):
    """A document store backend rejected or failed a request."""
