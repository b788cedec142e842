"""Per-session agent façade.

One `AnalysisAgent` serves one user session: it owns the short-term
conversation window, reads long-term memory through MemoryStore, and routes
chat turns, analyses and skills to the model gateway.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Mapping, Optional

from cooked_agent.errors import AgentNotInitialized, SynthesisFailed
from cooked_agent.extraction import ResponseExtractor
from cooked_agent.instructions import (
    AGENT_NAME_MAX_LENGTH,
    ANALYSIS_MODES,
    DEFAULT_AGENT_NAME,
    DEFAULT_MODE,
    PERSONALITY_PRESETS,
    chat_instructions,
    mode_instructions,
    personality_instruction,
    resolve_tone,
)
from cooked_agent.logs import get_logger, log_event
from cooked_agent.memory import (
    AgentIdentity,
    AgentMemory,
    ConversationStore,
    MemoryExtractor,
    MemoryItem,
    MemoryStore,
)
from cooked_agent.normalization import NormalizationEngine, ScoreSheet
from cooked_agent.plans import PlanCapability, get_plan
from cooked_agent.prompts import (
    PromptContext,
    format_analysis,
    format_metrics,
    format_previous,
    format_profile,
    format_project,
)
from cooked_agent.providers.base import ModelGateway, TokenSink
from cooked_agent.scoring import AnalysisResult
from cooked_agent.skills import LearningPath, Project, SkillContext, SkillRegistry, SkillResult

logger = get_logger("agent")


def normalize_mode(mode: Optional[str]) -> str:
    key = (mode or "").strip().upper()
    return key if key in ANALYSIS_MODES else DEFAULT_MODE


class AnalysisAgent:
    def __init__(
        self,
        gateway: ModelGateway,
        *,
        uid: Optional[str] = None,
        memory_store: Optional[MemoryStore] = None,
        conversations: Optional[ConversationStore] = None,
        extractor: Optional[MemoryExtractor] = None,
        skills: Optional[SkillRegistry] = None,
        engine: Optional[NormalizationEngine] = None,
        model: Optional[str] = None,
        short_term_limit: Optional[int] = None,
    ):
        self.gateway = gateway
        self.uid = uid
        self.memory_store = memory_store
        self.conversations = conversations
        response_extractor = ResponseExtractor()
        self.skills = skills or SkillRegistry(gateway, extractor=response_extractor, engine=engine, model=model)
        if extractor is None and memory_store is not None:
            extractor = MemoryExtractor(gateway, memory_store, extractor=response_extractor, model=model)
        self.extractor = extractor
        self.memory = AgentMemory(limit=short_term_limit)
        self.plan: PlanCapability = get_plan(None)
        self.model_override = model
        self.identity: Optional[AgentIdentity] = None
        self.tone = ""
        self.chat_id: Optional[str] = None
        self.weights: Optional[Mapping[str, Any]] = None
        self.locked_scores: Optional[ScoreSheet] = None
        self._display_name: Optional[str] = None
        self._initialized = False

    # ── setup ─────────────────────────────────────────────────────────────

    async def initialize(
        self,
        metrics: Optional[Mapping[str, Any]],
        profile: Optional[Mapping[str, Any]],
        prior_result: Optional[Mapping[str, Any]] = None,
        conversation_ref: Optional[str] = None,
        plan_id: Optional[str] = None,
        tone: Optional[str] = None,
        display_name: Optional[str] = None,
        weights: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Load user context, persisted memory and (optionally) a saved chat.

        ``tone`` may be an intensity id (mild/balanced/brutal) or resolved text.
        """
        self.plan = get_plan(plan_id)
        self.tone = resolve_tone(tone)
        self.weights = weights
        self.memory.set_context(metrics, profile, prior_result)
        if prior_result:
            self.memory.set_previous_analysis(prior_result)
        if display_name:
            self._display_name = display_name.strip()[:AGENT_NAME_MAX_LENGTH] or None

        if self.memory_store is not None and self.uid:
            state = await self.memory_store.load_state(self.uid, self.plan)
            if state is not None:
                self.memory.long_term = state.memory
                self.memory.memory_enabled = state.memoryEnabled
                self.identity = state.identity

        if conversation_ref and self.conversations is not None and self.uid:
            chat = await self.conversations.get_chat(self.uid, conversation_ref)
            if chat is not None:
                self.memory.load_messages(chat.get("messages") or [])
                self.chat_id = conversation_ref

        self._initialized = True
        log_event(
            logger,
            "agent_initialized",
            plan=self.plan.id,
            longTermCount=len(self.memory.long_term),
            messages=len(self.memory.messages),
            chatLoaded=self.chat_id is not None,
        )

    def _require_context(self) -> Dict[str, Any]:
        if not self._initialized or self.memory.user_context is None:
            raise AgentNotInitialized("agent not initialized with user context")
        return self.memory.user_context

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def model(self) -> Optional[str]:
        return self.model_override or self.plan.primary_model

    # ── identity ──────────────────────────────────────────────────────────

    def _custom_identity(self) -> Optional[AgentIdentity]:
        return self.identity if self.plan.custom_identity else None

    @property
    def display_name(self) -> str:
        ident = self._custom_identity()
        if not self.plan.custom_identity:
            return DEFAULT_AGENT_NAME
        return self._display_name or (ident.name if ident and ident.name else DEFAULT_AGENT_NAME)

    @property
    def icon(self) -> Optional[str]:
        ident = self._custom_identity()
        if ident is None:
            return None
        if ident.icon:
            return ident.icon
        preset = PERSONALITY_PRESETS.get(ident.personality)
        return preset.icon if preset else None

    # ── prompt assembly ───────────────────────────────────────────────────

    @property
    def _detail(self) -> str:
        return self.plan.metrics_detail

    def _long_term_block(self) -> str:
        if not self.plan.memory or not self.memory.memory_enabled:
            return ""
        return self.memory.format_long_term()

    def _persona_block(self) -> str:
        ident = self._custom_identity()
        parts = []
        if self.display_name != DEFAULT_AGENT_NAME:
            parts.append(f"Your name is {self.display_name}.")
        if ident is not None:
            instruction = personality_instruction(ident.personality, ident.customPersonality)
            if instruction:
                parts.append(instruction)
        if not parts:
            return ""
        return "\n\n# PERSONALITY\n" + "\n".join(parts)

    def _system_prompt(self, mode: str) -> str:
        return chat_instructions(self._detail == "summary", self.tone) + self._persona_block() + mode_instructions(mode)

    def _history_block(self) -> str:
        if len(self.memory.messages) > 1:
            return "# CONVERSATION HISTORY\n" + self.memory.get_formatted_history()
        return ""

    def _skill_context(self, sink: Optional[TokenSink] = None, request_id: Optional[str] = None) -> SkillContext:
        ctx = self._require_context()
        return SkillContext(
            metrics=ctx["metrics"],
            profile=ctx["profile"],
            previous=self.memory.previous_analysis,
            detail=self._detail,
            tone=self.tone,
            memory=self._long_term_block(),
            weights=self.weights,
            sink=sink,
            model=self.model,
            request_id=request_id,
        )

    # ── chat ──────────────────────────────────────────────────────────────

    async def process_message(
        self,
        text: str,
        mode: Optional[str] = "QUICK_CHAT",
        sink: Optional[TokenSink] = None,
        model: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        mode = normalize_mode(mode)
        self.memory.add_message("user", text)
        ctx = self.memory.user_context or {}
        prompt = PromptContext.build(
            [
                ("profile", format_profile(ctx.get("profile")) if ctx else ""),
                ("metrics", format_metrics(ctx.get("metrics"), self._detail) if ctx else ""),
                ("analysis", format_analysis(ctx.get("analysis"))),
                ("memory", self._long_term_block()),
                ("history", self._history_block()),
                ("message", f"# USER MESSAGE\n{text}"),
                ("instruction", "Respond based on the context above. Be specific to their actual metrics and give actionable advice."),
            ]
        )
        if mode == "PROGRESS_COMPARISON":
            prompt.add("previous", format_previous(self.memory.previous_analysis))
        response = await self.gateway.generate(
            prompt.render(),
            system=self._system_prompt(mode),
            model=model or self.model,
            sink=sink,
            request_id=request_id,
        )
        self.memory.add_message("assistant", response)
        return {"response": response, "memoryStatus": self.memory_status()}

    async def process_project_message(
        self,
        text: str,
        project: Mapping[str, Any],
        sink: Optional[TokenSink] = None,
        model: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        self.memory.add_message("user", text)
        ctx = self.memory.user_context or {}
        context_block = PromptContext.build(
            [
                ("task", format_project(project)),
                ("profile", format_profile(ctx.get("profile")) if ctx else ""),
                ("metrics", format_metrics(ctx.get("metrics"), self._detail) if ctx else ""),
                ("analysis", format_analysis(ctx.get("analysis"), detailed=False)),
                ("memory", self._long_term_block()),
            ]
        ).render()
        system = self._system_prompt("PROJECT_CHAT") + "\n\n" + context_block
        prompt = PromptContext.build(
            [
                ("history", self._history_block()),
                ("message", f"# USER MESSAGE\n{text}"),
                ("instruction", "Respond based on the project context above. Be specific and actionable."),
            ]
        )
        response = await self.gateway.generate(
            prompt.render(),
            system=system,
            model=model or self.model,
            sink=sink,
            request_id=request_id,
        )
        self.memory.add_message("assistant", response)
        return {"response": response, "memoryStatus": self.memory_status()}

    # ── analyses ──────────────────────────────────────────────────────────

    async def execute_skill(
        self,
        name: str,
        sink: Optional[TokenSink] = None,
        request_id: Optional[str] = None,
    ) -> SkillResult:
        return await self.skills.execute(name, self._skill_context(sink=sink, request_id=request_id))

    def _record_analysis(self, result: AnalysisResult) -> None:
        data = result.to_dict()
        self.memory.set_analysis(data)
        self.memory.set_previous_analysis(data)
        self.locked_scores = None

    async def analyze_profile(self, sink: Optional[TokenSink] = None, request_id: Optional[str] = None) -> AnalysisResult:
        """Full two-phase analysis. On SynthesisFailed the locked scores are kept for `retry_synthesis`."""
        try:
            out = await self.execute_skill("analyzeProfile", sink=sink, request_id=request_id)
        except SynthesisFailed as e:
            if isinstance(e.scores, ScoreSheet):
                self.locked_scores = e.scores
            raise
        result: AnalysisResult = out.data
        self._record_analysis(result)
        return result

    async def retry_synthesis(self, sink: Optional[TokenSink] = None, request_id: Optional[str] = None) -> AnalysisResult:
        """Re-run Phase 2 alone over the scores locked by a failed analysis."""
        ctx = self._require_context()
        if self.locked_scores is None:
            raise AgentNotInitialized("no locked scores to synthesize from")
        result = await self.skills.orchestrator.synthesize(
            self.locked_scores,
            ctx["metrics"],
            ctx["profile"],
            sink=sink,
            tone=self.tone,
            detail=self._detail,
            model=self.model,
            request_id=request_id,
        )
        self._record_analysis(result)
        return result

    async def recommend_projects(self, request_id: Optional[str] = None) -> List[Project]:
        out = await self.execute_skill("recommendProjects", request_id=request_id)
        return out.data

    async def compare_progress(self, request_id: Optional[str] = None) -> SkillResult:
        return await self.execute_skill("compareProgress", request_id=request_id)

    async def generate_learning_path(self, request_id: Optional[str] = None) -> LearningPath:
        out = await self.execute_skill("generateLearningPath", request_id=request_id)
        return out.data

    # ── memory ────────────────────────────────────────────────────────────

    def end_session(self, request_id: Optional[str] = None) -> Optional[asyncio.Task]:
        """Detach a memory extraction over the current conversation; never awaited here."""
        if self.extractor is None or not self.uid:
            return None
        return self.extractor.schedule(self.uid, self.plan, self.memory, model=self.model, request_id=request_id)

    def _replace_long_term(self, items: List[MemoryItem]) -> None:
        self.memory.long_term[:] = items

    async def add_memory(self, item: Any) -> List[MemoryItem]:
        """Persist one item; on plans without memory the current list comes back unchanged."""
        if not self.plan.memory or self.memory_store is None or not self.uid:
            return list(self.memory.long_term)
        items = await self.memory_store.add_memory_item(self.uid, self.plan, item)
        if items is None:
            return list(self.memory.long_term)
        self._replace_long_term(items)
        return list(items)

    async def clear_memory(self) -> bool:
        if self.memory_store is None or not self.uid:
            return False
        ok = await self.memory_store.clear_memory(self.uid, self.plan)
        if ok:
            self._replace_long_term([])
        return ok

    async def set_memory_enabled(self, enabled: bool) -> bool:
        if self.memory_store is None or not self.uid:
            return False
        ok = await self.memory_store.set_memory_enabled(self.uid, self.plan, enabled)
        if ok:
            self.memory.memory_enabled = bool(enabled)
        return ok

    async def delete_memory_item(self, index: int) -> List[MemoryItem]:
        if not self.plan.memory or self.memory_store is None or not self.uid:
            return list(self.memory.long_term)
        items = await self.memory_store.delete_memory_item(self.uid, self.plan, index)
        if items is None:
            return list(self.memory.long_term)
        self._replace_long_term(items)
        return list(items)

    async def save_identity(self, identity: AgentIdentity) -> bool:
        if self.memory_store is None or not self.uid:
            return False
        ok = await self.memory_store.save_identity(self.uid, self.plan, identity)
        if ok:
            self.identity = identity
        return ok

    def memory_status(self) -> Dict[str, Any]:
        return self.memory.summary()

    def reset_conversation(self) -> None:
        self.memory.clear_history()
