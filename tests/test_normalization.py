import pytest

from cooked_agent.normalization import (
    CATEGORY_KEYS,
    DEFAULT_WEIGHTS,
    NormalizationEngine,
    canonical_key,
    coerce_number,
    derive_level_name,
    largest_remainder,
    level_from_scores,
)


def _cats(activity=None, skill=None, growth=None, collab=None):
    out = {}
    for key, val in (("activity", activity), ("skillSignals", skill), ("growth", growth), ("collaboration", collab)):
        if val is not None:
            out[key] = {"score": val, "notes": f"{key} note"}
    return out


def test_default_weights_yield_expected_level_and_name():
    sheet = NormalizationEngine().normalize(_cats(80, 70, 60, 50))
    assert sheet.level == 7
    assert sheet.level_name == "Toasted"
    assert sheet.weights == dict(DEFAULT_WEIGHTS)
    assert sheet.filled == []


@pytest.mark.parametrize(
    "score, level, name",
    [
        (100, 10, "Cooking"),
        (0, 0, "Burnt"),
        (45, 5, "Cooked"),  # 4.5 rounds half-up
        (44, 4, "Well-Done"),
        (85, 9, "Cooking"),  # 8.5 rounds half-up
    ],
)
def test_level_boundaries_round_half_up(score, level, name):
    sheet = NormalizationEngine().normalize(_cats(score, score, score, score))
    assert sheet.level == level
    assert sheet.level_name == name


@pytest.mark.parametrize(
    "level, name",
    [(10, "Cooking"), (9, "Cooking"), (8, "Toasted"), (7, "Toasted"), (6, "Cooked"), (5, "Cooked"), (4, "Well-Done"), (3, "Well-Done"), (2, "Burnt"), (0, "Burnt")],
)
def test_derive_level_name_thresholds(level, name):
    assert derive_level_name(level) == name


def test_level_from_scores_is_integer_exact():
    scores = {"activity": 55, "skillSignals": 55, "growth": 55, "collaboration": 55}
    assert level_from_scores(scores, DEFAULT_WEIGHTS) == 6  # 5.5 -> 6


def test_missing_category_filled_with_mean_of_present():
    sheet = NormalizationEngine().normalize(_cats(80, 70, 60, None))
    assert sheet.filled == ["collaboration"]
    assert sheet.categories["collaboration"].score == 70
    # 3200 + 2100 + 900 + 1050 = 7250 -> 7
    assert sheet.level == 7


def test_all_missing_falls_back_to_neutral():
    sheet = NormalizationEngine().normalize({})
    assert sheet.filled == list(CATEGORY_KEYS)
    assert all(c.score == 50 for c in sheet.categories.values())
    assert sheet.level == 5


def test_scores_are_clamped_and_coerced():
    raw = {
        "activity": {"score": 150},
        "skillSignals": {"score": -5},
        "growth": {"score": "72.5"},
        "collaboration": 40,
    }
    sheet = NormalizationEngine().normalize(raw)
    assert sheet.categories["activity"].score == 100
    assert sheet.categories["skillSignals"].score == 0
    assert sheet.categories["growth"].score == 73
    assert sheet.categories["collaboration"].score == 40
    assert sheet.filled == []


def test_boolean_and_nan_scores_are_treated_as_missing():
    assert coerce_number(True) is None
    assert coerce_number(float("nan")) is None
    assert coerce_number("abc") is None
    sheet = NormalizationEngine().normalize(_cats(80, 60, 70, True))
    assert sheet.filled == ["collaboration"]


def test_aliased_keys_are_canonicalized():
    assert canonical_key("Skill Signals") == "skillSignals"
    assert canonical_key("skill_signals") == "skillSignals"
    assert canonical_key("COLLAB") == "collaboration"
    assert canonical_key("unknown") is None
    raw = {"Activity": {"score": 80}, "skill-signals": {"score": 70}, "Growth": {"score": 60}, "collab": {"score": 50}}
    sheet = NormalizationEngine().normalize(raw)
    assert sheet.filled == []
    assert sheet.level == 7


def test_weight_override_applied_when_valid():
    weights = {"activity": 30, "skillSignals": 30, "growth": 20, "collaboration": 20}
    sheet = NormalizationEngine().normalize(_cats(80, 70, 60, 50), weights)
    assert sheet.weights == weights
    # 2400 + 2100 + 1200 + 1000 = 6700 -> 7
    assert sheet.level == 7


def test_weight_override_out_of_range_rejected_entirely():
    engine = NormalizationEngine()
    assert engine.resolve_weights({"activity": 50, "skillSignals": 20, "growth": 15, "collaboration": 15}) == dict(DEFAULT_WEIGHTS)
    assert engine.resolve_weights({"activity": 40, "skillSignals": 30, "growth": 30}) == dict(DEFAULT_WEIGHTS)


def test_weight_override_missing_or_non_numeric_key_rejected():
    engine = NormalizationEngine()
    assert engine.resolve_weights({"activity": "x", "skillSignals": 30, "growth": 20, "collaboration": 20}) == dict(DEFAULT_WEIGHTS)
    assert engine.resolve_weights({"activity": None, "skillSignals": 30, "growth": 20, "collaboration": 20}) == dict(DEFAULT_WEIGHTS)
    assert engine.resolve_weights({"activity": True, "skillSignals": 30, "growth": 20, "collaboration": 20}) == dict(DEFAULT_WEIGHTS)
    assert engine.resolve_weights({"skillSignals": 40, "growth": 30, "collaboration": 30}) == dict(DEFAULT_WEIGHTS)
    # numeric strings are accepted as numbers
    assert engine.resolve_weights({"activity": "30", "skillSignals": 30, "growth": 20, "collaboration": 20})["activity"] == 30


def test_weight_override_discarded_when_sum_repair_leaves_range():
    engine = NormalizationEngine()
    # 180 total: activity would need to drop to -35
    assert engine.resolve_weights({"activity": 45, "skillSignals": 45, "growth": 45, "collaboration": 45}) == dict(DEFAULT_WEIGHTS)
    # 60 total: activity would need to grow to 55
    assert engine.resolve_weights({"activity": 15, "skillSignals": 15, "growth": 15, "collaboration": 15}) == dict(DEFAULT_WEIGHTS)
    sheet = engine.normalize(_cats(80, 70, 60, 50), {"activity": 15, "skillSignals": 15, "growth": 15, "collaboration": 15})
    assert sheet.weights == dict(DEFAULT_WEIGHTS)
    assert sheet.level == 7


def test_weight_override_rounding_difference_goes_to_largest():
    weights = NormalizationEngine().resolve_weights({"activity": 40.6, "skillSignals": 30, "growth": 15, "collaboration": 15})
    assert weights == {"activity": 40, "skillSignals": 30, "growth": 15, "collaboration": 15}
    assert sum(weights.values()) == 100


def test_sub_metrics_drive_category_score():
    raw = _cats(None, 70, 60, 50)
    raw["activity"] = {
        "score": 10,
        "subMetrics": [
            {"name": "consistency", "score": 80, "weight": 3},
            {"name": "volume", "score": 40, "weight": 1},
        ],
    }
    sheet = NormalizationEngine().normalize(raw)
    cat = sheet.categories["activity"]
    assert [m.weight for m in cat.sub_metrics] == [75, 25]
    assert cat.score == 70
    assert cat.to_dict()["subMetrics"][0] == {"name": "consistency", "score": 80, "weight": 75}


def test_sub_metrics_with_missing_weight_use_equal_weights():
    raw = _cats(None, 70, 60, 50)
    raw["activity"] = {"subMetrics": [{"name": "a", "score": 80, "weight": 2}, {"name": "b", "score": 40}]}
    sheet = NormalizationEngine().normalize(raw)
    assert [m.weight for m in sheet.categories["activity"].sub_metrics] == [50, 50]
    assert sheet.categories["activity"].score == 60


def test_single_sub_metric_is_ignored():
    raw = _cats(None, 70, 60, 50)
    raw["activity"] = {"score": 33, "subMetrics": [{"name": "only", "score": 90, "weight": 1}]}
    sheet = NormalizationEngine().normalize(raw)
    assert sheet.categories["activity"].score == 33
    assert sheet.categories["activity"].sub_metrics == []


def test_largest_remainder_sums_to_total():
    assert largest_remainder([1, 1, 1]) == [34, 33, 33]
    assert sum(largest_remainder([0.2, 0.3, 0.5, 0.7])) == 100


def test_normalize_is_idempotent_over_its_own_output():
    engine = NormalizationEngine()
    first = engine.normalize(_cats(91, 33, 47, 12), {"activity": 25, "skillSignals": 25, "growth": 25, "collaboration": 25})
    again = engine.normalize(first.to_dict(), first.weights)
    assert again.scores() == first.scores()
    assert again.level == first.level
    assert again.level_name == first.level_name


def test_engine_rejects_bad_default_weights():
    with pytest.raises(ValueError):
        NormalizationEngine({"activity": 50, "skillSignals": 30, "growth": 15, "collaboration": 15})
