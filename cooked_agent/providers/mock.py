import asyncio
import json
from collections import deque
from typing import AsyncIterator, Deque, Dict, Iterable, List, Optional

from cooked_agent.errors import GatewayError
from .base import ModelGateway

_DEFAULT_SCORES = {
    "categoryScores": {
        "activity": {"score": 62, "notes": "Steady commits with a few long gaps."},
        "skillSignals": {"score": 58, "notes": "Moderate language breadth."},
        "growth": {"score": 50, "notes": "Flat year-over-year velocity."},
        "collaboration": {"score": 35, "notes": "Few pull requests."},
    }
}

_DEFAULT_NARRATIVE = {
    "summary": "Consistent solo output; collaboration is the main gap.",
    "recommendations": [
        "Open two pull requests against an active open-source project this month.",
        "Ship a small API with tests and CI in the next three weeks.",
        "Write READMEs for your three most recent repositories.",
    ],
    "projectsInsight": "Shipping reviewed, deployed work moves you toward hireable.",
    "languageInsight": "Your stack is coherent; add one typed language for depth.",
    "activityInsight": "Keep the current cadence and close the long gaps.",
}


_DEFAULT_PROJECTS = [
    {
        "name": "Deployed Task Tracker API",
        "skill1": "REST design",
        "skill2": "Testing",
        "skill3": "CI/CD",
        "overview": "A small API with auth, tests and a deploy pipeline.",
        "alignment": "Adds production signals to an otherwise hobby-grade portfolio.",
        "suggestedStack": [
            {"name": "FastAPI", "description": "HTTP layer"},
            {"name": "PostgreSQL", "description": "Persistence"},
            {"name": "GitHub Actions", "description": "CI"},
        ],
    }
]

_DEFAULT_PATH = {
    "targetRole": "Backend Engineer",
    "estimatedTimeframe": "3-6 months",
    "phases": [
        {
            "phase": 1,
            "duration": "8 weeks",
            "focus": "Foundations",
            "milestones": [
                {
                    "title": "Ship a tested API",
                    "skills": ["HTTP", "pytest"],
                    "deliverable": "Public repo with CI",
                    "successCriteria": "Green CI on every push",
                }
            ],
        }
    ],
    "resources": ["The official FastAPI tutorial"],
}

_DEFAULT_PROGRESS = {
    "improvements": ["More consistent weekly commits."],
    "regressions": [],
    "summary": "Steady progress since the last check.",
    "nextSteps": ["Open a pull request to an external project."],
}

_DEFAULT_MEMORY = {
    "goals": ["Land a backend internship this summer."],
    "insights": ["Prefers Python and small, shippable projects."],
    "summary": "Discussed closing the collaboration gap.",
}


def _chunk_text(s: str, size: int = 6):
    for i in range(0, len(s), size):
        yield s[i : i + size]


class MockGateway(ModelGateway):
    """Deterministic gateway for local runs and tests.

    Queued ``responses`` are returned in order (an Exception instance is raised
    instead of returned). With an empty queue, scoring and synthesis prompts get
    canned JSON and anything else is echoed back.
    """

    provider_name: str = "mock"

    def __init__(
        self,
        responses: Optional[Iterable[object]] = None,
        model: Optional[str] = None,
        chunk_size: int = 6,
        delay: float = 0.0,
    ):
        super().__init__(model=model or "mock-1")
        self._responses: Deque[object] = deque(responses or [])
        self.calls: List[Dict[str, Optional[str]]] = []
        self._chunk_size = max(1, chunk_size)
        self._delay = delay

    def queue(self, *responses: object) -> None:
        self._responses.extend(responses)

    def _next(self, prompt: str, system: Optional[str], model: Optional[str]) -> str:
        self.calls.append({"prompt": prompt, "system": system, "model": model or self.model})
        if self._responses:
            item = self._responses.popleft()
            if isinstance(item, BaseException):
                raise item
            return str(item)
        text = (system or "") + "\n" + prompt
        for marker, canned in (
            ("categoryScores", _DEFAULT_SCORES),
            ("projectsInsight", _DEFAULT_NARRATIVE),
            ("suggestedStack", _DEFAULT_PROJECTS),
            ("targetRole", _DEFAULT_PATH),
            ("nextSteps", _DEFAULT_PROGRESS),
            ('"goals"', _DEFAULT_MEMORY),
        ):
            if marker in text:
                return json.dumps(canned)
        return prompt or "Hello, world!"

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        model: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> str:
        return self._next(prompt, system, model)

    async def stream_chat(
        self,
        prompt: str,
        system: Optional[str] = None,
        model: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> AsyncIterator[str]:
        text = self._next(prompt, system, model)
        # Stream in small chunks deterministically
        for token in _chunk_text(text, size=self._chunk_size):
            yield token
            if self._delay:
                await asyncio.sleep(self._delay)


class FailingGateway(MockGateway):
    """Gateway whose every call fails with a transport error."""

    provider_name: str = "failing"

    def _next(self, prompt: str, system: Optional[str], model: Optional[str]) -> str:
        self.calls.append({"prompt": prompt, "system": system, "model": model or self.model})
        raise GatewayError("mock transport failure", status_code=503)
