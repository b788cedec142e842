"""Skill assessment and coaching agent service.

Modules:
- normalization: deterministic category score normalization and level derivation
- extraction: JSON recovery from free-form model output
- scoring: two-phase score/synthesis orchestration
- memory: short-term conversation buffer, long-term memory store and extractor
- skills: named analysis capabilities
- agent: per-session facade composing the above
"""
