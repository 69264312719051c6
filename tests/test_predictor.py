import pytest

from astrosignals.predictor import aggregate_theme_scores, level_from_score, ranked_themes
from astrosignals.rules_engine import EvaluatedRule


def applied(rid, theme, area, score, trend=None, tone=None, point_code=None):
    return EvaluatedRule(rule_id=rid, theme=theme, area=area, score=score, weight=score,
                         trend=trend, tone=tone, point_code=point_code)


def test_career_growth_scenario():
    summary = aggregate_theme_scores([
        applied(1, "career", "growth", 2.0, trend="up", tone="positive", point_code="JUP_10"),
        applied(2, "career", "growth", 1.0, trend="down", tone="cautious"),
    ])
    career = summary.themes["career"]
    growth = career.areas["growth"]
    assert growth.score == pytest.approx(3.0)
    assert growth.level == "high"
    assert (growth.trend, growth.tone) == ("up", "positive")
    assert growth.rules == ["JUP_10", "RULE_2"]
    assert career.total_score == pytest.approx(3.0)
    assert career.rank == 1


@pytest.mark.parametrize("score, level", [(0.0, "low"), (1.49, "low"), (1.5, "medium"), (2.99, "medium"),
                                          (3.0, "high"), (10, "high")])
def test_levels(score, level):
    assert level_from_score(score) == level


def test_first_rule_wins_a_tie():
    summary = aggregate_theme_scores([
        applied(1, "finance", "income", 1.0, tone="steady"),
        applied(2, "finance", "income", 1.0, tone="volatile"),
    ])
    assert summary.themes["finance"].areas["income"].tone == "steady"


def test_non_positive_scores_are_ignored():
    summary = aggregate_theme_scores([
        applied(1, "health", "vitality", 0.0),
        applied(2, "health", "vitality", -1.0),
    ])
    assert summary.themes == {}


def test_missing_theme_and_area_use_general():
    summary = aggregate_theme_scores([applied(1, None, None, 0.5)])
    assert summary.themes["general"].areas["general"].score == 0.5


def test_ranking_is_stable():
    summary = aggregate_theme_scores([
        applied(1, "career", "growth", 1.0),
        applied(2, "finance", "income", 2.0),
        applied(3, "health", "vitality", 1.0),
    ])
    assert summary.themes["finance"].rank == 1
    assert summary.themes["career"].rank == 2
    assert summary.themes["health"].rank == 3
    top = ranked_themes(summary, top_n=2)
    assert [t["theme"] for t in top] == ["finance", "career"]
    assert top[0] == {"theme": "finance", "rank": 1, "total_score": 2.0, "level": "medium"}


def test_accepts_plain_dicts():
    summary = aggregate_theme_scores([
        {"rule_id": 9, "theme": "career", "area": "growth", "score": 1.5, "weight": 1.5},
    ])
    assert summary.themes["career"].level == "medium"
    assert aggregate_theme_scores([]).themes == {}
