"""Recover JSON values from free-form model output.

Models wrap JSON in prose, markdown fences, trailing commas and stray
control characters. `ResponseExtractor.extract` isolates the most likely
JSON span and then applies progressively more aggressive repair passes,
each operating on the previous pass's output, returning the first value
that parses. ``None`` means nothing usable was found.
"""
import json
import re
from typing import Any, Callable, List, Optional

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([\]}])")
# Raw control characters except \t \n \r
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
# Backslashes that do not start a valid JSON escape
_STRAY_BACKSLASH_RE = re.compile(r'\\(?!["\\/bfnrtu])')

_OPENERS = {"object": "{", "array": "["}
_CLOSERS = {"{": "}", "[": "]"}


def _strip_trailing_commas(s: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", s)


def _strip_control_chars(s: str) -> str:
    return _CONTROL_RE.sub("", s)


def _escape_stray_backslashes(s: str) -> str:
    return _STRAY_BACKSLASH_RE.sub(r"\\\\", s)


# Applied in order; each pass sees the previous pass's output.
REPAIR_PASSES: List[Callable[[str], str]] = [
    _strip_trailing_commas,
    _strip_control_chars,
    _escape_stray_backslashes,
]


def _try_parse(s: str) -> Any:
    try:
        return json.loads(s), True
    except ValueError:
        return None, False


def isolate_json(text: str, expect: Optional[str] = None) -> str:
    """Return the span most likely to hold the JSON payload.

    Prefers the body of a markdown code fence, then the greedy span from the
    first opening bracket to the last matching closing bracket. ``expect``
    ('object' or 'array') restricts which bracket kind is searched for.
    """
    s = (text or "").strip()
    m = _FENCE_RE.search(s)
    if m:
        s = m.group(1).strip()
    openers = [_OPENERS[expect]] if expect in _OPENERS else ["{", "["]
    best_start = -1
    best_open = ""
    for op in openers:
        idx = s.find(op)
        if idx != -1 and (best_start == -1 or idx < best_start):
            best_start, best_open = idx, op
    if best_start == -1:
        return s
    end = s.rfind(_CLOSERS[best_open])
    if end <= best_start:
        return s[best_start:]
    return s[best_start : end + 1]


class ResponseExtractor:
    def __init__(self, passes: Optional[List[Callable[[str], str]]] = None):
        self._passes = list(passes) if passes is not None else list(REPAIR_PASSES)

    def extract(self, text: Optional[str], expect: Optional[str] = None) -> Any:
        if not text or not isinstance(text, str):
            return None
        candidate = isolate_json(text, expect)
        value, ok = _try_parse(candidate)
        if ok:
            return value
        for repair in self._passes:
            candidate = repair(candidate)
            value, ok = _try_parse(candidate)
            if ok:
                return value
        return None

    def extract_object(self, text: Optional[str]) -> Optional[dict]:
        value = self.extract(text, expect="object")
        return value if isinstance(value, dict) else None

    def extract_array(self, text: Optional[str]) -> Optional[list]:
        value = self.extract(text, expect="array")
        return value if isinstance(value, list) else None


_default = ResponseExtractor()


def extract_json(text: Optional[str], expect: Optional[str] = None) -> Any:
    return _default.extract(text, expect)
