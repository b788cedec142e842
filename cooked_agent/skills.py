"""Named analysis capabilities invokable independently of chat.

Every skill builds its prompt from the same primitives as the scoring
orchestrator (prompts.py) so data presentation stays consistent. Unknown
skill names produce a ``skill_not_found`` result instead of raising.
"""
from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from cooked_agent.errors import RecommendationFailed
from cooked_agent.extraction import ResponseExtractor
from cooked_agent.instructions import chat_instructions, mode_instructions
from cooked_agent.logs import get_logger, log_event
from cooked_agent.normalization import NormalizationEngine
from cooked_agent.prompts import PromptContext, format_analysis, format_metrics, format_previous, format_profile
from cooked_agent.providers.base import ModelGateway, TokenSink
from cooked_agent.scoring import ScoringOrchestrator

logger = get_logger("skills")

MAX_PROJECTS = 4
STACK_MIN = 1
STACK_MAX = 6


@dataclass
class SkillContext:
    metrics: Mapping[str, Any]
    profile: Mapping[str, Any]
    previous: Optional[Mapping[str, Any]] = None
    detail: str = "full"
    tone: Optional[str] = None
    memory: str = ""
    weights: Optional[Mapping[str, Any]] = None
    model: Optional[str] = None
    sink: Optional[TokenSink] = None
    request_id: Optional[str] = None

    @property
    def restrict_metrics(self) -> bool:
        return self.detail == "summary"


def _plain(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


@dataclass
class SkillResult:
    name: str
    ok: bool
    data: Any = None
    error: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"skill": self.name, "ok": self.ok}
        if self.ok:
            out["data"] = _plain(self.data)
        else:
            out["error"] = self.error
            if self.message:
                out["message"] = self.message
        return out


# ── output shapes ─────────────────────────────────────────────────────────


def _s(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [v.strip() for v in value if isinstance(v, str) and v.strip()]


@dataclass
class StackEntry:
    name: str
    description: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "description": self.description}


@dataclass
class Project:
    name: str
    skills: List[str]
    overview: str
    alignment: str
    suggested_stack: List[StackEntry]

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["Project"]:
        """Validate one recommended project; None drops it."""
        if not isinstance(raw, Mapping):
            return None
        name = _s(raw.get("name"))
        skills = _str_list(raw.get("skills")) or [_s(raw.get(f"skill{i}")) for i in (1, 2, 3)]
        skills = [s for s in skills if s][:3]
        stack_raw = raw.get("suggestedStack")
        stack = []
        if isinstance(stack_raw, list):
            for entry in stack_raw:
                if isinstance(entry, Mapping) and _s(entry.get("name")):
                    stack.append(StackEntry(name=_s(entry.get("name")), description=_s(entry.get("description"))))
        if not name or len(skills) < 3 or len(stack) < STACK_MIN:
            return None
        return cls(
            name=name,
            skills=skills,
            overview=_s(raw.get("overview")),
            alignment=_s(raw.get("alignment")),
            suggested_stack=stack[:STACK_MAX],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "skill1": self.skills[0],
            "skill2": self.skills[1],
            "skill3": self.skills[2],
            "overview": self.overview,
            "alignment": self.alignment,
            "suggestedStack": [s.to_dict() for s in self.suggested_stack],
        }


def parse_projects(raw: Any) -> List[Project]:
    if not isinstance(raw, list):
        return []
    projects = [p for p in (Project.from_raw(x) for x in raw) if p is not None]
    return projects[:MAX_PROJECTS]


def level_change(previous: Optional[int], current: int) -> str:
    if previous is None or previous == current:
        return "neutral"
    return "positive" if current > previous else "negative"


@dataclass
class ProgressReport:
    level: int
    level_name: str
    previous_level: Optional[int]
    level_change: str
    improvements: List[str] = field(default_factory=list)
    regressions: List[str] = field(default_factory=list)
    summary: str = ""
    next_steps: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cookedLevel": self.level,
            "levelName": self.level_name,
            "previousLevel": self.previous_level,
            "levelChange": self.level_change,
            "improvements": list(self.improvements),
            "regressions": list(self.regressions),
            "summary": self.summary,
            "nextSteps": list(self.next_steps),
        }


@dataclass
class Milestone:
    title: str
    skills: List[str]
    deliverable: str
    success_criteria: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "skills": list(self.skills),
            "deliverable": self.deliverable,
            "successCriteria": self.success_criteria,
        }


@dataclass
class LearningPhase:
    phase: int
    duration: str
    focus: str
    milestones: List[Milestone]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "duration": self.duration,
            "focus": self.focus,
            "milestones": [m.to_dict() for m in self.milestones],
        }


@dataclass
class LearningPath:
    target_role: str
    estimated_timeframe: str
    phases: List[LearningPhase]
    resources: List[str]

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["LearningPath"]:
        if not isinstance(raw, Mapping) or not isinstance(raw.get("phases"), list):
            return None
        phases: List[LearningPhase] = []
        for i, p in enumerate(raw["phases"], start=1):
            if not isinstance(p, Mapping):
                continue
            milestones = []
            for m in p.get("milestones") or []:
                if isinstance(m, Mapping) and _s(m.get("title")):
                    milestones.append(
                        Milestone(
                            title=_s(m.get("title")),
                            skills=_str_list(m.get("skills")),
                            deliverable=_s(m.get("deliverable")),
                            success_criteria=_s(m.get("successCriteria")),
                        )
                    )
            number = p.get("phase")
            phases.append(
                LearningPhase(
                    phase=number if isinstance(number, int) and not isinstance(number, bool) else i,
                    duration=_s(p.get("duration")),
                    focus=_s(p.get("focus")),
                    milestones=milestones,
                )
            )
        if not phases:
            return None
        return cls(
            target_role=_s(raw.get("targetRole")),
            estimated_timeframe=_s(raw.get("estimatedTimeframe")),
            phases=phases,
            resources=_str_list(raw.get("resources")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "targetRole": self.target_role,
            "estimatedTimeframe": self.estimated_timeframe,
            "phases": [p.to_dict() for p in self.phases],
            "resources": list(self.resources),
        }


# ── skills ────────────────────────────────────────────────────────────────


class Skill(abc.ABC):
    name: str = ""
    description: str = ""

    @abc.abstractmethod
    async def execute(self, registry: "SkillRegistry", ctx: SkillContext) -> Any:
        ...


def _base_context(ctx: SkillContext, task: str) -> PromptContext:
    return PromptContext.build(
        [
            ("task", task),
            ("profile", format_profile(ctx.profile)),
            ("metrics", format_metrics(ctx.metrics, ctx.detail)),
            ("memory", ctx.memory),
        ]
    )


class AnalyzeProfileSkill(Skill):
    name = "analyzeProfile"
    description = "Two-phase profile analysis with a deterministic Cooked Level"

    async def execute(self, registry: "SkillRegistry", ctx: SkillContext) -> Any:
        return await registry.orchestrator.run(
            ctx.metrics,
            ctx.profile,
            weights=ctx.weights,
            sink=ctx.sink,
            tone=ctx.tone,
            detail=ctx.detail,
            model=registry.model_for(ctx),
            request_id=ctx.request_id,
        )


class RecommendProjectsSkill(Skill):
    name = "recommendProjects"
    description = "Up to four projects targeting the user's skill gaps"

    async def execute(self, registry: "SkillRegistry", ctx: SkillContext) -> Any:
        prompt = _base_context(ctx, "Suggest exactly 4 projects targeting this user's skill gaps.")
        prompt.add("analysis", format_analysis(ctx.previous))
        prompt.add(
            "instruction",
            "Return ONLY a JSON array of exactly 4 projects matching the format in your instructions. "
            "No trailing commas. Double quotes only.",
        )
        system = chat_instructions(ctx.restrict_metrics, ctx.tone) + mode_instructions("PROJECT_RECOMMENDATION")
        text = await registry.gateway.generate(prompt.render(), system=system, model=registry.model_for(ctx), request_id=ctx.request_id)
        projects = parse_projects(registry.extractor.extract_array(text))
        if not projects:
            raise RecommendationFailed("no valid projects could be parsed from the model response")
        return projects


class CompareProgressSkill(Skill):
    name = "compareProgress"
    description = "Compare the current profile against the previous analysis"

    async def execute(self, registry: "SkillRegistry", ctx: SkillContext) -> Any:
        if not ctx.previous:
            return SkillResult(
                name=self.name,
                ok=False,
                error="no_previous_analysis",
                message="This is your first analysis. Complete some projects and return for a progress check!",
            )
        sheet = await registry.orchestrator.score(
            ctx.metrics,
            ctx.profile,
            weights=ctx.weights,
            detail=ctx.detail,
            model=registry.model_for(ctx),
            request_id=ctx.request_id,
        )
        prev_level = ctx.previous.get("level", ctx.previous.get("cookedLevel"))
        prev_level = prev_level if isinstance(prev_level, int) and not isinstance(prev_level, bool) else None
        change = level_change(prev_level, sheet.level)

        prompt = _base_context(ctx, "Compare this user's progress against their previous analysis.")
        prompt.add("previous", format_previous(ctx.previous))
        prompt.add("analysis", format_analysis({"level": sheet.level, "levelName": sheet.level_name, "categoryScores": sheet.to_dict()}))
        prompt.add(
            "instruction",
            f"The level change is {change} and is already computed; do not restate a different level.\n"
            "Provide a progress report in JSON format:\n"
            "{\n"
            '  "improvements": ["<specific improvement>"],\n'
            '  "regressions": ["<regression>"],\n'
            '  "summary": "<2-3 sentences on overall progress>",\n'
            '  "nextSteps": ["<updated recommendation 1>", "<recommendation 2>", "<recommendation 3>"]\n'
            "}",
        )
        system = chat_instructions(ctx.restrict_metrics, ctx.tone) + mode_instructions("PROGRESS_COMPARISON")
        text = await registry.gateway.generate(prompt.render(), system=system, model=registry.model_for(ctx), request_id=ctx.request_id)
        raw = registry.extractor.extract_object(text)
        if raw is None:
            raise RecommendationFailed("progress report could not be parsed from the model response")
        return ProgressReport(
            level=sheet.level,
            level_name=sheet.level_name,
            previous_level=prev_level,
            level_change=change,
            improvements=_str_list(raw.get("improvements")),
            regressions=_str_list(raw.get("regressions")),
            summary=_s(raw.get("summary")),
            next_steps=_str_list(raw.get("nextSteps")),
        )


class LearningPathSkill(Skill):
    name = "generateLearningPath"
    description = "Three-phase learning roadmap toward the user's goal"

    async def execute(self, registry: "SkillRegistry", ctx: SkillContext) -> Any:
        prompt = _base_context(ctx, "Create a learning roadmap for this user based on their profile and GitHub metrics.")
        prompt.add("analysis", format_analysis(ctx.previous, detailed=False))
        prompt.add(
            "instruction",
            "Generate a 3-phase learning path in JSON:\n"
            "{\n"
            '  "targetRole": "<role they are working toward>",\n'
            '  "estimatedTimeframe": "<e.g., 3-6 months>",\n'
            '  "phases": [{"phase": 1, "duration": "<e.g., 8 weeks>", "focus": "<theme>", '
            '"milestones": [{"title": "<name>", "skills": ["<skill>"], "deliverable": "<what to build>", '
            '"successCriteria": "<how to know it is done>"}]}],\n'
            '  "resources": ["<learning resource>"]\n'
            "}",
        )
        system = chat_instructions(ctx.restrict_metrics, ctx.tone) + mode_instructions("LEARNING_PATH")
        text = await registry.gateway.generate(prompt.render(), system=system, model=registry.model_for(ctx), request_id=ctx.request_id)
        path = LearningPath.from_raw(registry.extractor.extract_object(text))
        if path is None:
            raise RecommendationFailed("learning path could not be parsed from the model response")
        return path


def default_skills() -> List[Skill]:
    return [AnalyzeProfileSkill(), RecommendProjectsSkill(), CompareProgressSkill(), LearningPathSkill()]


class SkillRegistry:
    def __init__(
        self,
        gateway: ModelGateway,
        skills: Optional[Iterable[Skill]] = None,
        extractor: Optional[ResponseExtractor] = None,
        engine: Optional[NormalizationEngine] = None,
        model: Optional[str] = None,
    ):
        self.gateway = gateway
        self.extractor = extractor or ResponseExtractor()
        self.model = model
        self.orchestrator = ScoringOrchestrator(gateway, extractor=self.extractor, engine=engine, model=model)
        self._skills: Dict[str, Skill] = {s.name: s for s in (skills if skills is not None else default_skills())}

    def model_for(self, ctx: SkillContext) -> Optional[str]:
        return ctx.model or self.model

    def names(self) -> List[str]:
        return list(self._skills)

    def describe(self) -> List[Dict[str, str]]:
        return [{"name": s.name, "description": s.description} for s in self._skills.values()]

    def get(self, name: str) -> Optional[Skill]:
        return self._skills.get(name)

    async def execute(self, name: str, ctx: SkillContext) -> SkillResult:
        """Run a skill. Transport and parse errors propagate; unknown names do not."""
        skill = self._skills.get(name)
        if skill is None:
            log_event(logger, "skill_not_found", level=logging.WARNING, skill=name)
            return SkillResult(name=name, ok=False, error="skill_not_found", message=f"Skill '{name}' not found")
        out = await skill.execute(self, ctx)
        if isinstance(out, SkillResult):
            return out
        return SkillResult(name=name, ok=True, data=out)
