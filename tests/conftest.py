import sys
import os
from pathlib import Path

# Ensure project root is on sys.path for `import cooked_agent.*`
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Default: deterministic mock gateway and in-process document store
os.environ.setdefault("AI_PROVIDER", "mock")
os.environ.pop("CONVEX_URL", None)

import pytest  # noqa: E402


@pytest.fixture
def metrics_data():
    return {
        "commitsLast365": 412,
        "commitsLast90": 88,
        "prevYearCommits": 300,
        "activeWeeksPct": 62,
        "longestInactiveGap": 21,
        "totalPRs": 6,
        "mergedPRs": 4,
        "totalRepos": 14,
        "languages": ["Python", "TypeScript", "Go"],
        "commitVelocityTrend": 1.3,
    }


@pytest.fixture
def profile():
    return {
        "age": 21,
        "education": "undergrad_junior",
        "experienceYears": "1_2",
        "currentRole": "Student",
        "careerGoal": "Backend Engineer",
        "technicalSkills": "Python, SQL",
    }
