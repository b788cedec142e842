"""Deterministic normalization of model-supplied category scores.

The model only ever proposes per-category scores. Everything numeric that
reaches a user - clamped scores, weights, the 0-10 level and its tier name -
is recomputed here from those scores alone, so the same category map always
yields the same level no matter what narrative text accompanied it.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from cooked_agent.logs import get_logger, log_event

logger = get_logger("normalization")

CATEGORY_KEYS: Tuple[str, ...] = ("activity", "skillSignals", "growth", "collaboration")

DEFAULT_WEIGHTS: Mapping[str, int] = {
    "activity": 40,
    "skillSignals": 30,
    "growth": 15,
    "collaboration": 15,
}

WEIGHT_MIN = 15
WEIGHT_MAX = 45
NEUTRAL_SCORE = 50

# Keys are compared after lower-casing and dropping everything but [a-z0-9].
KEY_ALIASES: Mapping[str, str] = {
    "activity": "activity",
    "activities": "activity",
    "skillsignals": "skillSignals",
    "skillsignal": "skillSignals",
    "skill": "skillSignals",
    "skills": "skillSignals",
    "growth": "growth",
    "grow": "growth",
    "collaboration": "collaboration",
    "collaborations": "collaboration",
    "collab": "collaboration",
}

LEVEL_NAMES: Tuple[str, ...] = ("Burnt", "Well-Done", "Cooked", "Toasted", "Cooking")

# (minimum level, name), checked top-down
LEVEL_THRESHOLDS: Tuple[Tuple[int, str], ...] = (
    (9, "Cooking"),
    (7, "Toasted"),
    (5, "Cooked"),
    (3, "Well-Done"),
)


def canonical_key(raw: Any) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    squashed = re.sub(r"[^a-z0-9]", "", raw.lower())
    return KEY_ALIASES.get(squashed)


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def clamp_score(x: float) -> int:
    return max(0, min(100, round_half_up(x)))


def coerce_number(value: Any) -> Optional[float]:
    """Return a finite float for numbers and numeric strings, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        x = float(value)
    elif isinstance(value, str):
        try:
            x = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(x) or math.isinf(x):
        return None
    return x


def derive_level_name(level: int) -> str:
    for minimum, name in LEVEL_THRESHOLDS:
        if level >= minimum:
            return name
    return "Burnt"


def level_from_scores(scores: Mapping[str, int], weights: Mapping[str, int]) -> int:
    """Weighted sum of scores x weights, divided by 10 on the 0-100 scale, rounded half-up.

    Integer arithmetic keeps the result exact: ``total`` is the weighted sum
    scaled by 100, so ``total / 1000`` is the weighted average divided by 10.
    """
    total = sum(int(scores[k]) * int(weights[k]) for k in CATEGORY_KEYS)
    level = (total + 500) // 1000
    return max(0, min(10, level))


@dataclass
class SubMetric:
    name: str
    score: int
    weight: int

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "score": self.score, "weight": self.weight}


@dataclass
class CategoryScore:
    key: str
    score: int
    weight: int
    notes: str = ""
    sub_metrics: List[SubMetric] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"score": self.score, "weight": self.weight, "notes": self.notes}
        if self.sub_metrics:
            out["subMetrics"] = [m.to_dict() for m in self.sub_metrics]
        return out


@dataclass
class ScoreSheet:
    """Complete, validated category map plus the level derived from it."""

    categories: Dict[str, CategoryScore]
    level: int
    level_name: str
    filled: List[str] = field(default_factory=list)

    @property
    def weights(self) -> Dict[str, int]:
        return {k: c.weight for k, c in self.categories.items()}

    def scores(self) -> Dict[str, int]:
        return {k: c.score for k, c in self.categories.items()}

    def to_dict(self) -> Dict[str, Any]:
        return {k: self.categories[k].to_dict() for k in CATEGORY_KEYS}


def largest_remainder(raw_weights: List[float], total: int = 100) -> List[int]:
    """Scale non-negative weights to integers summing to ``total``."""
    s = sum(raw_weights)
    if s <= 0:
        raw_weights = [1.0] * len(raw_weights)
        s = float(len(raw_weights))
    exact = [w * total / s for w in raw_weights]
    floors = [int(math.floor(x)) for x in exact]
    short = total - sum(floors)
    order = sorted(range(len(exact)), key=lambda i: (-(exact[i] - floors[i]), i))
    for i in order[:short]:
        floors[i] += 1
    return floors


class NormalizationEngine:
    def __init__(self, default_weights: Optional[Mapping[str, int]] = None):
        base = dict(default_weights or DEFAULT_WEIGHTS)
        if set(base) != set(CATEGORY_KEYS) or sum(base.values()) != 100:
            raise ValueError("default weights must cover every category and sum to 100")
        self.default_weights: Dict[str, int] = {k: int(base[k]) for k in CATEGORY_KEYS}

    # ── key handling ──────────────────────────────────────────────────────

    @staticmethod
    def canonicalize(raw: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """Map aliased keys to canonical ones; unknown keys are dropped."""
        out: Dict[str, Any] = {}
        if not isinstance(raw, Mapping):
            return out
        for k, v in raw.items():
            key = canonical_key(k)
            if key is not None and key not in out:
                out[key] = v
        return out

    def missing(self, raw: Optional[Mapping[str, Any]]) -> List[str]:
        """Canonical categories that are absent or carry no usable score."""
        renamed = self.canonicalize(raw)
        return [k for k in CATEGORY_KEYS if self._entry_score(renamed.get(k))[0] is None]

    # ── weights ───────────────────────────────────────────────────────────

    def resolve_weights(self, override: Optional[Mapping[str, Any]]) -> Dict[str, int]:
        """Validate a caller weight override; any defect rejects it entirely."""
        defaults = dict(self.default_weights)
        if override is None:
            return defaults
        renamed = self.canonicalize(override)
        weights: Dict[str, int] = {}
        for k in CATEGORY_KEYS:
            w = coerce_number(renamed.get(k))
            if w is None or w < WEIGHT_MIN or w > WEIGHT_MAX:
                log_event(logger, "weights_override_rejected", key=k, value=renamed.get(k))
                return defaults
            weights[k] = max(WEIGHT_MIN, min(WEIGHT_MAX, round_half_up(w)))
        diff = 100 - sum(weights.values())
        if diff:
            largest = max(CATEGORY_KEYS, key=lambda k: (weights[k], -CATEGORY_KEYS.index(k)))
            weights[largest] += diff
            if not (WEIGHT_MIN <= weights[largest] <= WEIGHT_MAX):
                log_event(logger, "weights_override_rejected", key=largest, value=weights[largest])
                return defaults
        return weights

    # ── per-category parsing ──────────────────────────────────────────────

    @staticmethod
    def _sub_metrics(entry: Any) -> List[SubMetric]:
        if not isinstance(entry, Mapping):
            return []
        raw = entry.get("subMetrics")
        if raw is None:
            raw = entry.get("sub_metrics")
        if not isinstance(raw, list):
            return []
        parsed: List[Tuple[str, float, Optional[float]]] = []
        for item in raw:
            if not isinstance(item, Mapping):
                continue
            name = item.get("name")
            score = coerce_number(item.get("score"))
            if not isinstance(name, str) or not name.strip() or score is None:
                continue
            w = coerce_number(item.get("weight"))
            parsed.append((name.strip(), score, w if (w is not None and w > 0) else None))
        if len(parsed) < 2:
            return []
        if any(w is None for _, _, w in parsed):
            raw_weights = [1.0] * len(parsed)
        else:
            raw_weights = [float(w) for _, _, w in parsed]  # type: ignore[arg-type]
        weights = largest_remainder(raw_weights)
        return [SubMetric(name=n, score=clamp_score(s), weight=w) for (n, s, _), w in zip(parsed, weights)]

    def _entry_score(self, entry: Any) -> Tuple[Optional[int], List[SubMetric]]:
        subs = self._sub_metrics(entry)
        if subs:
            return clamp_score(sum(m.score * m.weight for m in subs) / 100.0), subs
        if isinstance(entry, Mapping):
            value = coerce_number(entry.get("score"))
        else:
            value = coerce_number(entry)
        if value is None:
            return None, []
        return clamp_score(value), []

    # ── main entry point ──────────────────────────────────────────────────

    def normalize(
        self,
        raw: Optional[Mapping[str, Any]],
        weights: Optional[Mapping[str, Any]] = None,
    ) -> ScoreSheet:
        renamed = self.canonicalize(raw)
        resolved = self.resolve_weights(weights)

        parsed: Dict[str, Tuple[Optional[int], List[SubMetric]]] = {
            k: self._entry_score(renamed.get(k)) for k in CATEGORY_KEYS
        }
        present = [score for score, _ in parsed.values() if score is not None]
        # Mean of the valid scores that did come back; neutral only when none did
        fallback = round_half_up(sum(present) / len(present)) if present else NEUTRAL_SCORE

        categories: Dict[str, CategoryScore] = {}
        filled: List[str] = []
        for k in CATEGORY_KEYS:
            score, subs = parsed[k]
            if score is None:
                score = fallback
                filled.append(k)
            entry = renamed.get(k)
            notes = entry.get("notes") if isinstance(entry, Mapping) else None
            categories[k] = CategoryScore(
                key=k,
                score=score,
                weight=resolved[k],
                notes=notes.strip() if isinstance(notes, str) else "",
                sub_metrics=subs,
            )

        level = level_from_scores({k: c.score for k, c in categories.items()}, resolved)
        return ScoreSheet(categories=categories, level=level, level_name=derive_level_name(level), filled=filled)
