from dataclasses import dataclass
from typing import Dict, Optional

from cooked_agent import config


@dataclass(frozen=True)
class PlanCapability:
    id: str
    name: str
    memory: bool
    custom_identity: bool
    metrics_detail: str  # "summary" | "full"
    memory_cap: int
    primary_model: str

    @property
    def effective_memory_cap(self) -> int:
        """Plan cap bounded by the absolute MEMORY_MAX_ITEMS ceiling."""
        if not self.memory:
            return 0
        return max(0, min(self.memory_cap, config.MEMORY_MAX_ITEMS))


PLANS: Dict[str, PlanCapability] = {
    "free": PlanCapability(
        id="free",
        name="Free",
        memory=False,
        custom_identity=False,
        metrics_detail="summary",
        memory_cap=0,
        primary_model="meta-llama/llama-4-scout",
    ),
    "student": PlanCapability(
        id="student",
        name="Student",
        memory=True,
        custom_identity=False,
        metrics_detail="full",
        memory_cap=75,
        primary_model="meta-llama/llama-4-scout",
    ),
    "pro": PlanCapability(
        id="pro",
        name="Pro",
        memory=True,
        custom_identity=True,
        metrics_detail="full",
        memory_cap=200,
        primary_model="meta-llama/llama-4-maverick",
    ),
    "ultimate": PlanCapability(
        id="ultimate",
        name="Ultimate",
        memory=True,
        custom_identity=True,
        metrics_detail="full",
        memory_cap=500,
        primary_model="google/gemini-3.1-pro-preview",
    ),
}

DEFAULT_PLAN = "free"


def get_plan(plan_id: Optional[str]) -> PlanCapability:
    """Unknown or missing plan ids resolve to the free plan."""
    return PLANS.get((plan_id or "").strip().lower(), PLANS[DEFAULT_PLAN])
