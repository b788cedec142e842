"""Two-phase analysis: category scoring, then narrative synthesis.

Phase 1 asks the model for category scores only, retries once for any
missing categories and locks the normalized level. Phase 2 asks for the
narrative with that level stated as authoritative. The level in the
returned result always comes from NormalizationEngine, never from text.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from cooked_agent import metrics
from cooked_agent.errors import GatewayError, ScoringFailed, SynthesisFailed
from cooked_agent.extraction import ResponseExtractor
from cooked_agent.instructions import CHAT_INSTRUCTIONS, SCORING_INSTRUCTIONS, mode_instructions, tone_override
from cooked_agent.logs import get_logger, log_event
from cooked_agent.normalization import CATEGORY_KEYS, NormalizationEngine, ScoreSheet
from cooked_agent.prompts import PromptContext, format_analysis, format_metrics, format_profile
from cooked_agent.providers.base import ModelGateway, TokenSink

logger = get_logger("scoring")


class Phase(str, enum.Enum):
    SCORING = "scoring"
    RETRY = "retry"
    SYNTHESIS = "synthesis"
    DONE = "done"
    FAILED = "failed"


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


@dataclass
class Narrative:
    summary: str = ""
    recommendations: List[str] = field(default_factory=list)
    projects_insight: str = ""
    language_insight: str = ""
    activity_insight: str = ""

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["Narrative"]:
        """Coerce a parsed synthesis object; None when it carries no narrative at all."""
        if not isinstance(raw, Mapping):
            return None
        recs = raw.get("recommendations")
        recommendations = [r.strip() for r in recs if isinstance(r, str) and r.strip()] if isinstance(recs, list) else []
        insights = raw.get("insights") if isinstance(raw.get("insights"), Mapping) else {}
        out = cls(
            summary=_text(raw.get("summary")),
            recommendations=recommendations,
            projects_insight=_text(raw.get("projectsInsight") or insights.get("projects")),
            language_insight=_text(raw.get("languageInsight") or insights.get("language")),
            activity_insight=_text(raw.get("activityInsight") or insights.get("activity")),
        )
        if not out.summary and not out.recommendations:
            return None
        return out


@dataclass
class AnalysisResult:
    scores: ScoreSheet
    narrative: Narrative

    @property
    def level(self) -> int:
        return self.scores.level

    @property
    def level_name(self) -> str:
        return self.scores.level_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "categoryScores": self.scores.to_dict(),
            "level": self.scores.level,
            "levelName": self.scores.level_name,
            "summary": self.narrative.summary,
            "recommendations": list(self.narrative.recommendations),
            "insights": {
                "projects": self.narrative.projects_insight,
                "language": self.narrative.language_insight,
                "activity": self.narrative.activity_insight,
            },
        }


def _retry_format(missing: List[str]) -> str:
    rows = ",\n".join(f'    "{k}": {{ "score": <integer 0-100>, "notes": "<1 sentence>" }}' for k in missing)
    return "Respond with ONLY this JSON (no extra text):\n{\n  \"categoryScores\": {\n" + rows + "\n  }\n}"


class ScoringOrchestrator:
    def __init__(
        self,
        gateway: ModelGateway,
        extractor: Optional[ResponseExtractor] = None,
        engine: Optional[NormalizationEngine] = None,
        model: Optional[str] = None,
    ):
        self.gateway = gateway
        self.extractor = extractor or ResponseExtractor()
        self.engine = engine or NormalizationEngine()
        self.model = model
        self.phase: Optional[Phase] = None

    def _category_map(self, text: Optional[str]) -> Optional[Dict[str, Any]]:
        raw = self.extractor.extract_object(text)
        if raw is None:
            return None
        cats = raw.get("categoryScores", raw)
        return dict(cats) if isinstance(cats, Mapping) else None

    # ── Phase 1 ───────────────────────────────────────────────────────────

    async def score(
        self,
        metrics_data: Optional[Mapping[str, Any]],
        profile: Optional[Mapping[str, Any]],
        *,
        weights: Optional[Mapping[str, Any]] = None,
        detail: str = "full",
        model: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> ScoreSheet:
        """Request category scores, retrying once for missing ones, and lock the level.

        Transport errors on the first call propagate. A failed retry is logged
        and the missing categories are filled by the mean rule. Raises
        ScoringFailed only when no usable score came back at all.
        """
        self.phase = Phase.SCORING
        model = model or self.model
        profile_block = format_profile(profile)
        metrics_block = format_metrics(metrics_data, detail)
        ctx = PromptContext.build(
            [
                ("task", "Analyze this GitHub profile. Score all four categories (0-100) using the calibration anchors in your instructions."),
                ("profile", profile_block),
                ("metrics", metrics_block),
                ("instruction", "Return ONLY the categoryScores JSON described in your instructions. All 4 categories REQUIRED."),
            ]
        )
        text = await self.gateway.generate(ctx.render(), system=SCORING_INSTRUCTIONS, model=model, request_id=request_id)
        cats = self.engine.canonicalize(self._category_map(text))
        missing = self.engine.missing(cats)

        if missing:
            self.phase = Phase.RETRY
            metrics.SCORING_RETRIES_TOTAL.inc()
            log_event(logger, "scoring_retry", missing=missing, requestId=request_id)
            retry = PromptContext.build(
                [
                    (
                        "task",
                        f"The previous analysis was missing scores for: {', '.join(missing)}.\n"
                        "Using the same GitHub profile data below, return ONLY a JSON object with just the missing categoryScores keys.",
                    ),
                    ("profile", profile_block),
                    ("metrics", metrics_block),
                    ("instruction", _retry_format(missing)),
                ]
            )
            try:
                retry_text = await self.gateway.generate(retry.render(), system=SCORING_INSTRUCTIONS, model=model, request_id=request_id)
                recovered = self.engine.canonicalize(self._category_map(retry_text))
                for k in missing:
                    if k in recovered:
                        cats[k] = recovered[k]
            except GatewayError as e:
                log_event(logger, "scoring_retry_failed", error=type(e).__name__, message=str(e)[:512], requestId=request_id)

        still_missing = self.engine.missing(cats)
        if len(still_missing) == len(CATEGORY_KEYS):
            self.phase = Phase.FAILED
            metrics.SCORING_RUNS_TOTAL.labels(outcome="scoring_failed").inc()
            log_event(logger, "scoring_failed", requestId=request_id)
            raise ScoringFailed("no category scores could be recovered from the model response")

        sheet = self.engine.normalize(cats, weights)
        if sheet.filled:
            log_event(logger, "scoring_filled", filled=sheet.filled, requestId=request_id)
        log_event(logger, "scoring_locked", level=sheet.level, levelName=sheet.level_name, requestId=request_id)
        return sheet

    # ── Phase 2 ───────────────────────────────────────────────────────────

    async def synthesize(
        self,
        sheet: ScoreSheet,
        metrics_data: Optional[Mapping[str, Any]],
        profile: Optional[Mapping[str, Any]],
        *,
        sink: Optional[TokenSink] = None,
        tone: Optional[str] = None,
        detail: str = "full",
        model: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> AnalysisResult:
        """Request the narrative for already-locked scores.

        Can be called on its own with a sheet from an earlier run, which is
        how a failed synthesis is retried without re-scoring.
        """
        self.phase = Phase.SYNTHESIS
        locked = {"level": sheet.level, "levelName": sheet.level_name, "categoryScores": sheet.to_dict()}
        ctx = PromptContext.build(
            [
                (
                    "task",
                    f'This user\'s Cooked Level is exactly {sheet.level}/10, "{sheet.level_name}". '
                    "It was computed from the category scores below and is authoritative. Do not re-derive or restate a different level.",
                ),
                ("profile", format_profile(profile)),
                ("metrics", format_metrics(metrics_data, detail)),
                ("analysis", format_analysis(locked)),
                ("instruction", "Return ONLY the JSON described in your instructions."),
            ]
        )
        system = CHAT_INSTRUCTIONS + mode_instructions("SYNTHESIS") + tone_override(tone)
        text = await self.gateway.generate(ctx.render(), system=system, model=model or self.model, sink=sink, request_id=request_id)
        narrative = Narrative.from_raw(self.extractor.extract_object(text))
        if narrative is None:
            self.phase = Phase.FAILED
            metrics.SCORING_RUNS_TOTAL.labels(outcome="synthesis_failed").inc()
            log_event(logger, "synthesis_failed", level=sheet.level, requestId=request_id)
            raise SynthesisFailed("narrative could not be parsed from the model response", scores=sheet)

        # Deterministic: re-normalizing the locked map yields the same level
        final = self.engine.normalize(sheet.to_dict(), sheet.weights)
        self.phase = Phase.DONE
        return AnalysisResult(scores=final, narrative=narrative)

    async def run(
        self,
        metrics_data: Optional[Mapping[str, Any]],
        profile: Optional[Mapping[str, Any]],
        *,
        weights: Optional[Mapping[str, Any]] = None,
        sink: Optional[TokenSink] = None,
        tone: Optional[str] = None,
        detail: str = "full",
        model: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> AnalysisResult:
        sheet = await self.score(metrics_data, profile, weights=weights, detail=detail, model=model, request_id=request_id)
        result = await self.synthesize(
            sheet, metrics_data, profile, sink=sink, tone=tone, detail=detail, model=model, request_id=request_id
        )
        metrics.SCORING_RUNS_TOTAL.labels(outcome="ok").inc()
        return result
