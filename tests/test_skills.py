import json

import pytest

from cooked_agent.errors import RecommendationFailed
from cooked_agent.instructions import FREE_PLAN_RESTRICTION
from cooked_agent.providers.mock import MockGateway
from cooked_agent.skills import (
    LearningPath,
    Project,
    SkillContext,
    SkillRegistry,
    level_change,
    parse_projects,
)


def _project(name, stack_size=2, skills=3):
    raw = {
        "name": name,
        "overview": "o",
        "alignment": "a",
        "suggestedStack": [{"name": f"tech{i}", "description": "d"} for i in range(stack_size)],
    }
    for i in range(1, skills + 1):
        raw[f"skill{i}"] = f"s{i}"
    return raw


SCORES = json.dumps(
    {
        "categoryScores": {
            "activity": {"score": 90},
            "skillSignals": {"score": 90},
            "growth": {"score": 90},
            "collaboration": {"score": 90},
        }
    }
)


@pytest.fixture
def ctx(metrics_data, profile):
    return SkillContext(metrics=metrics_data, profile=profile)


def test_project_validation():
    assert Project.from_raw(_project("ok")).to_dict()["skill3"] == "s3"
    assert Project.from_raw(_project("no stack", stack_size=0)) is None
    assert Project.from_raw(_project("two skills", skills=2)) is None
    assert Project.from_raw({"skill1": "a"}) is None
    assert len(Project.from_raw(_project("big", stack_size=9)).suggested_stack) == 6


def test_parse_projects_limits_to_four():
    raw = [_project(f"p{i}") for i in range(6)] + ["junk"]
    assert [p.name for p in parse_projects(raw)] == ["p0", "p1", "p2", "p3"]
    assert parse_projects({"not": "a list"}) == []


def test_level_change():
    assert level_change(None, 5) == "neutral"
    assert level_change(5, 5) == "neutral"
    assert level_change(4, 6) == "positive"
    assert level_change(7, 3) == "negative"


def test_learning_path_requires_phases():
    assert LearningPath.from_raw({"targetRole": "x"}) is None
    path = LearningPath.from_raw({"phases": [{"focus": "f", "milestones": [{"title": "t", "successCriteria": "c"}]}]})
    assert path.phases[0].phase == 1
    assert path.to_dict()["phases"][0]["milestones"][0]["successCriteria"] == "c"


def test_registry_lists_default_skills():
    reg = SkillRegistry(MockGateway())
    assert reg.names() == ["analyzeProfile", "recommendProjects", "compareProgress", "generateLearningPath"]
    assert all(d["description"] for d in reg.describe())


@pytest.mark.asyncio
async def test_unknown_skill_is_a_typed_result(ctx):
    gw = MockGateway()
    result = await SkillRegistry(gw).execute("makeCoffee", ctx)
    assert result.ok is False
    assert result.error == "skill_not_found"
    assert result.to_dict() == {"skill": "makeCoffee", "ok": False, "error": "skill_not_found", "message": "Skill 'makeCoffee' not found"}
    assert gw.calls == []


@pytest.mark.asyncio
async def test_analyze_profile_skill(ctx):
    result = await SkillRegistry(MockGateway()).execute("analyzeProfile", ctx)
    assert result.ok
    data = result.to_dict()["data"]
    assert data["level"] == 5
    assert data["levelName"] == "Cooked"


@pytest.mark.asyncio
async def test_recommend_projects_skill(ctx):
    gw = MockGateway(["Here you go:\n" + json.dumps([_project("p1"), _project("bad", stack_size=0), _project("p2")])])
    result = await SkillRegistry(gw).execute("recommendProjects", ctx)
    assert [p["name"] for p in result.to_dict()["data"]] == ["p1", "p2"]
    assert "# MODE: Project suggestions" in gw.calls[0]["system"]


@pytest.mark.asyncio
async def test_recommend_projects_with_no_valid_projects_raises(ctx):
    gw = MockGateway([json.dumps([_project("bad", stack_size=0)])])
    with pytest.raises(RecommendationFailed):
        await SkillRegistry(gw).execute("recommendProjects", ctx)


@pytest.mark.asyncio
async def test_summary_detail_restricts_skill_prompts(metrics_data, profile):
    gw = MockGateway()
    ctx = SkillContext(metrics=metrics_data, profile=profile, detail="summary")
    await SkillRegistry(gw).execute("recommendProjects", ctx)
    assert FREE_PLAN_RESTRICTION in gw.calls[0]["system"]
    assert "Commits last 90 days" not in gw.calls[0]["prompt"]


@pytest.mark.asyncio
async def test_compare_progress_without_previous(ctx):
    gw = MockGateway()
    result = await SkillRegistry(gw).execute("compareProgress", ctx)
    assert result.ok is False
    assert result.error == "no_previous_analysis"
    assert gw.calls == []


@pytest.mark.asyncio
async def test_compare_progress_derives_level_change(metrics_data, profile):
    report = {"improvements": ["More PRs"], "regressions": [], "summary": "Up.", "nextSteps": ["Keep going"]}
    gw = MockGateway([SCORES, json.dumps(report)])
    ctx = SkillContext(metrics=metrics_data, profile=profile, previous={"cookedLevel": 5, "levelName": "Cooked", "summary": "old"})

    result = await SkillRegistry(gw).execute("compareProgress", ctx)

    data = result.to_dict()["data"]
    assert data["cookedLevel"] == 9
    assert data["levelName"] == "Cooking"
    assert data["previousLevel"] == 5
    assert data["levelChange"] == "positive"
    assert data["nextSteps"] == ["Keep going"]
    assert "## PREVIOUS ANALYSIS" in gw.calls[1]["prompt"]


@pytest.mark.asyncio
async def test_learning_path_skill(ctx):
    result = await SkillRegistry(MockGateway()).execute("generateLearningPath", ctx)
    data = result.to_dict()["data"]
    assert data["targetRole"] == "Backend Engineer"
    assert data["phases"][0]["milestones"][0]["title"] == "Ship a tested API"


@pytest.mark.asyncio
async def test_learning_path_unparseable_raises(ctx):
    with pytest.raises(RecommendationFailed):
        await SkillRegistry(MockGateway(["no roadmap"])).execute("generateLearningPath", ctx)
