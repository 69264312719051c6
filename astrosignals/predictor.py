# astrosignals/predictor.py
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, Field

from .rules_engine import EvaluatedRule

MEDIUM_THRESHOLD = 1.5
HIGH_THRESHOLD = 3.0


class AreaScore(BaseModel):
    score: float = 0.0
    level: str = "low"
    trend: Optional[str] = None
    tone: Optional[str] = None
    rules: List[str] = Field(default_factory=list)


class ThemeScore(BaseModel):
    total_score: float = 0.0
    level: str = "low"
    rank: Optional[int] = None
    areas: Dict[str, AreaScore] = Field(default_factory=dict)


class ThemeSummary(BaseModel):
    themes: Dict[str, ThemeScore] = Field(default_factory=dict)


def level_from_score(score: float) -> str:
    if score >= HIGH_THRESHOLD:
        return "high"
    if score >= MEDIUM_THRESHOLD:
        return "medium"
    return "low"


def _rule_tag(r: EvaluatedRule) -> Optional[str]:
    if r.point_code:
        return r.point_code
    if r.rule_id is not None:
        return f"RULE_{r.rule_id}"
    return None


def aggregate_theme_scores(evaluated: Sequence[Union[EvaluatedRule, Mapping[str, Any]]]) -> ThemeSummary:
    """
    Group applied rules by theme then area and sum their (positive) scores.
    Each area takes trend/tone from its single highest-scoring rule
    (first seen wins a tie). Themes are ranked by total, 1 = highest.
    """
    themes: Dict[str, ThemeScore] = {}
    top_score: Dict[tuple, float] = {}

    for raw in evaluated or []:
        r = raw if isinstance(raw, EvaluatedRule) else EvaluatedRule.model_validate(raw)
        if r.score <= 0:
            continue
        theme_key = r.theme or "general"
        area_key = r.area or "general"

        theme = themes.setdefault(theme_key, ThemeScore())
        area = theme.areas.setdefault(area_key, AreaScore())
        area.score += r.score
        theme.total_score += r.score

        tag = _rule_tag(r)
        if tag and tag not in area.rules:
            area.rules.append(tag)

        if r.score > top_score.get((theme_key, area_key), 0.0):
            top_score[(theme_key, area_key)] = r.score
            area.trend = r.trend or area.trend
            area.tone = r.tone or area.tone

    for theme in themes.values():
        theme.level = level_from_score(theme.total_score)
        for area in theme.areas.values():
            area.level = level_from_score(area.score)

    # sorted() is stable, so equal totals keep encounter order
    ordered = sorted(themes.items(), key=lambda kv: kv[1].total_score, reverse=True)
    for idx, (_, theme) in enumerate(ordered):
        theme.rank = idx + 1

    return ThemeSummary(themes=themes)


def ranked_themes(summary: ThemeSummary, top_n: int = 3) -> List[Dict[str, Any]]:
    ranked = sorted(summary.themes.items(), key=lambda kv: kv[1].rank or 0)
    return [
        {"theme": key, "rank": t.rank, "total_score": round(t.total_score, 3), "level": t.level}
        for key, t in ranked[:top_n]
    ]
