"""Prompt construction primitives shared by the orchestrator, the agent and skills.

A prompt is a `PromptContext`: named sections kept in a fixed order and
rendered once. Tests assert on sections rather than on the whole string.
"""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

SECTION_ORDER: Tuple[str, ...] = (
    "task",
    "profile",
    "metrics",
    "analysis",
    "previous",
    "memory",
    "history",
    "message",
    "instruction",
)

LEVEL_DESCRIPTIONS: Dict[str, str] = {
    "Cooking": "top tier (9-10/10), highly competitive",
    "Toasted": "above average (7-8/10), solid with some gaps",
    "Cooked": "below average (5-6/10), needs focused effort",
    "Well-Done": "significantly below average (3-4/10), not yet competitive",
    "Burnt": "near-dormant (0-2/10), essentially no activity",
}

SCALE_REMINDER = "Scale reminder: Burnt < Well-Done < Cooked < Toasted < Cooking (higher = better)"

_EDUCATION = {
    "high_school": "High School",
    "undergrad_freshman": "Undergrad - Freshman",
    "undergrad_sophomore": "Undergrad - Sophomore",
    "undergrad_junior": "Undergrad - Junior",
    "undergrad_senior": "Undergrad - Senior",
    "graduate": "Graduate Student",
    "bootcamp": "Bootcamp Graduate",
    "self_taught": "Self-Taught",
    "full_time": "Full-Time Professional",
}

# Withheld from the model on summary-detail plans
DETAILED_METRIC_FIELDS = frozenset(
    {
        "commitsLast90",
        "prevYearCommits",
        "activeWeeksPct",
        "avgCommitsPerActiveWeek",
        "stdDevPerWeek",
        "longestInactiveGap",
        "totalContributions",
        "openIssues",
        "closedIssues",
        "issuesClosedRatio",
        "topLanguageDominancePct",
        "categoryPercentages",
        "repoCategoryBreakdown",
        "activityMomentumRatio",
        "domainDiversityChange",
    }
)


def format_education(value: Optional[str]) -> str:
    if not value:
        return ""
    return _EDUCATION.get(value, value.replace("_", " "))


def _na(value: Any, default: str = "N/A") -> str:
    if value is None or value == "":
        return default
    return str(value)


def _pairs(value: Any, suffix: str = "") -> str:
    if not isinstance(value, Mapping) or not value:
        return "N/A"
    return ", ".join(f"{k}: {v}{suffix}" for k, v in value.items())


def format_profile(profile: Optional[Mapping[str, Any]]) -> str:
    p = profile or {}
    exp = str(p.get("experienceYears") or "").replace("_", " ") or "Unknown"
    lines = [
        "## USER PROFILE",
        f"- Age: {_na(p.get('age'), 'Unknown')}",
        f"- Education: {format_education(p.get('education')) or 'Unknown'}",
        f"- Experience: {exp}",
        f"- Current Status: {_na(p.get('currentRole'), 'Unknown')}",
        f"- Career Goal: {_na(p.get('careerGoal'), 'Not specified')}",
        f"- Technical Skills: {_na(p.get('technicalSkills'), 'Not specified')}",
    ]
    if p.get("technicalInterests"):
        lines.append(f"- Technical Interests: {p['technicalInterests']}")
    if p.get("hobbies"):
        lines.append(f"- Hobbies: {p['hobbies']}")
    return "\n".join(lines)


def format_metrics(metrics: Optional[Mapping[str, Any]], detail: str = "full") -> str:
    """Render the metrics record grouped by scoring category.

    With ``detail='summary'`` the fields in DETAILED_METRIC_FIELDS are left
    out entirely, not shown as N/A.
    """
    m = dict(metrics or {})
    full = detail != "summary"

    def line(key: str, label: str, value: str) -> Optional[str]:
        if not full and key in DETAILED_METRIC_FIELDS:
            return None
        return f"- {label}: {value}"

    languages = m.get("languages") or []
    language_count = m.get("languageCount")
    if language_count is None and isinstance(languages, list):
        language_count = len(languages)

    groups: List[Tuple[str, List[Optional[str]]]] = [
        (
            "### Activity (40% of score)",
            [
                line("commitsLast365", "Commits last 365 days", _na(m.get("commitsLast365", m.get("totalCommits")))),
                line("commitsLast90", "Commits last 90 days", _na(m.get("commitsLast90"))),
                line("prevYearCommits", "Previous year commits", _na(m.get("prevYearCommits"))),
                line("activeWeeksPct", "Active weeks %", f"{_na(m.get('activeWeeksPct'))}% (out of 52 weeks)"),
                line("avgCommitsPerActiveWeek", "Avg commits per active week", _na(m.get("avgCommitsPerActiveWeek"))),
                line("stdDevPerWeek", "Std deviation per week", f"{_na(m.get('stdDevPerWeek'))} (lower = more consistent)"),
                line("longestInactiveGap", "Longest inactive gap", f"{_na(m.get('longestInactiveGap'))} days"),
                line("streak", "Contribution streak", f"{_na(m.get('streak'), '0')} days"),
            ],
        ),
        (
            "### Collaboration (15% of score)",
            [
                line("totalPRs", "Total PRs created", _na(m.get("totalPRs"), "0")),
                line("mergedPRs", "Merged PRs", _na(m.get("mergedPRs"))),
                line("openIssues", "Open issues", _na(m.get("openIssues"))),
                line("closedIssues", "Closed issues", _na(m.get("closedIssues"))),
                line("issuesClosedRatio", "Issues closed ratio", f"{_na(m.get('issuesClosedRatio'))} (closed / opened+1)"),
            ],
        ),
        (
            "### Skill Signals (30% of score)",
            [
                line("totalRepos", "Total repositories", _na(m.get("totalRepos"))),
                line("languageCount", "Unique languages", _na(language_count)),
                line("languages", "Top languages", ", ".join(str(x) for x in languages) or "Unknown"),
                line("topLanguageDominancePct", "Top language dominance", f"{_na(m.get('topLanguageDominancePct'))}% of codebase"),
                line("categoryPercentages", "Tech domain breakdown (% codebase)", _pairs(m.get("categoryPercentages"), "%")),
                line("repoCategoryBreakdown", "Repos by dominant domain", _pairs(m.get("repoCategoryBreakdown"))),
                line("totalStars", "Stars received", _na(m.get("totalStars"), "0")),
                line("totalForks", "Forks", _na(m.get("totalForks"), "0")),
            ],
        ),
        (
            "### Growth (15% of score)",
            [
                line("commitVelocityTrend", "Commit velocity trend", f"{_na(m.get('commitVelocityTrend'))} (>1 = accelerating vs prior year)"),
                line("activityMomentumRatio", "Activity momentum ratio", f"{_na(m.get('activityMomentumRatio'))} (~1 = steady, >1 = ramping up)"),
                line("domainDiversityChange", "Domain diversity change", f"{_na(m.get('domainDiversityChange'))} tech domains added vs prior year"),
            ],
        ),
    ]
    out = ["## GITHUB METRICS"]
    for heading, rows in groups:
        body = [r for r in rows if r is not None]
        if body:
            out.append("")
            out.append(heading)
            out.extend(body)
    return "\n".join(out)


def format_analysis(result: Optional[Mapping[str, Any]], detailed: bool = True) -> str:
    """Render a pre-computed result so the model never has to re-derive the level."""
    if not result:
        return ""
    level = result.get("level", result.get("cookedLevel"))
    name = str(result.get("levelName") or "")
    desc = LEVEL_DESCRIPTIONS.get(name, "")
    lines = [
        "## CURRENT ANALYSIS RESULTS (pre-computed, do not re-score)",
        f'- Cooked Level: {level}/10, Level Name: "{name}"' + (f" ({desc})" if desc else ""),
        f"- {SCALE_REMINDER}",
    ]
    if result.get("summary"):
        lines.append(f"- Summary: {result['summary']}")
    cats = result.get("categoryScores")
    if isinstance(cats, Mapping) and cats:
        lines.append("- Category Scores:")
        for key, cat in cats.items():
            if not isinstance(cat, Mapping):
                continue
            if detailed:
                lines.append(f"  - {key}: {cat.get('score')}/100 ({cat.get('weight')}% weight): {cat.get('notes') or ''}".rstrip(": "))
            else:
                lines.append(f"  - {key}: {cat.get('score')}/100")
    recs = result.get("recommendations")
    if detailed and isinstance(recs, list) and recs:
        lines.append("- Recommendations already given to user:")
        lines.extend(f"  - {r}" for r in recs)
    return "\n".join(lines)


def format_previous(previous: Optional[Mapping[str, Any]]) -> str:
    if not previous:
        return ""
    level = previous.get("level", previous.get("cookedLevel"))
    return "\n".join(
        [
            f"## PREVIOUS ANALYSIS ({previous.get('timestamp') or 'Recent'})",
            f"- Cooked Level: {level}/10 ({previous.get('levelName') or 'Unknown'})",
            f"- Summary: {previous.get('summary') or ''}",
            f"- Recommendations Given: {json.dumps(previous.get('recommendations') or [])}",
        ]
    )


def format_project(project: Optional[Mapping[str, Any]]) -> str:
    if not project:
        return ""
    skills = project.get("skills")
    if not isinstance(skills, list):
        skills = [project.get(f"skill{i}") for i in (1, 2, 3)]
    lines = [
        "# PROJECT CONTEXT",
        "## Project Details",
        f"- Name: {project.get('name') or 'Untitled'}",
        f"- Overview: {project.get('overview') or 'N/A'}",
        f"- Skills: {', '.join(str(s) for s in skills if s)}",
        f"- Alignment: {project.get('alignment') or 'N/A'}",
    ]
    stack = project.get("suggestedStack")
    if isinstance(stack, list) and stack:
        parts = [f"{s.get('name')} ({s.get('description')})" for s in stack if isinstance(s, Mapping)]
        if parts:
            lines.append(f"- Stack: {', '.join(parts)}")
    return "\n".join(lines)


@dataclass
class PromptContext:
    """Named prompt sections rendered in SECTION_ORDER."""

    sections: Dict[str, str] = field(default_factory=dict)

    def add(self, name: str, body: Optional[str]) -> "PromptContext":
        if name not in SECTION_ORDER:
            raise ValueError(f"unknown prompt section: {name}")
        text = (body or "").strip()
        if text:
            self.sections[name] = text
        else:
            self.sections.pop(name, None)
        return self

    def section(self, name: str) -> Optional[str]:
        return self.sections.get(name)

    def names(self) -> List[str]:
        return [n for n in SECTION_ORDER if n in self.sections]

    def render(self) -> str:
        return "\n\n".join(self.sections[n] for n in self.names())

    @classmethod
    def build(cls, pairs: Iterable[Tuple[str, Optional[str]]]) -> "PromptContext":
        ctx = cls()
        for name, body in pairs:
            ctx.add(name, body)
        return ctx
