# astrosignals/main.py
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .config import get_settings
from .conditions import ConditionTreeError, leaf_operators, validate_condition_tree
from .predictor import aggregate_theme_scores, ranked_themes
from .rules_engine import evaluate_rules_with_diagnostics, load_rules
from .signals import DOMAINS, aggregate_signals
from .time_engine import (
    DashaError, generate_periods, generate_sub_periods, moon_sidereal_longitude,
    snapshot_dasha_fields, state_at, to_utc,
)

settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Astro Signals")


class EvaluateIn(BaseModel):
    rules: Optional[List[Dict[str, Any]]] = None   # falls back to RULES_DIR
    snapshot: Dict[str, Any]
    scope: Optional[str] = None
    top_n: int = 3


class SignalsIn(BaseModel):
    rules: Optional[List[Dict[str, Any]]] = None   # falls back to RULES_DIR
    snapshot: Dict[str, Any]
    domains: Optional[List[str]] = None


class ValidateIn(BaseModel):
    condition_tree: Any


class BirthIn(BaseModel):
    birth: str                           # ISO timestamp, e.g. "1990-05-17T04:30:00+05:30"
    tz_hours: Optional[float] = None     # only used when `birth` is naive
    moon_longitude: Optional[float] = None   # sidereal degrees; computed when absent


class PeriodsIn(BirthIn):
    count: Optional[int] = None


class StateIn(BirthIn):
    at: str


class SubPeriodsIn(BaseModel):
    planet: str
    start: str = Field(alias="from")
    end: str = Field(alias="to")


def _moon(body: BirthIn) -> float:
    if body.moon_longitude is not None:
        return body.moon_longitude
    return moon_sidereal_longitude(body.birth, body.tz_hours, settings.AYANAMSHA)


def _birth(body: BirthIn):
    return to_utc(body.birth, body.tz_hours)


@app.get("/")
def root():
    return {"message": "Astro Signals API running!"}


# ----- rules -----
@app.post("/rules/evaluate")
def rules_evaluate(body: EvaluateIn):
    if body.rules is not None:
        rules, load_errors = body.rules, []
    else:
        pack = load_rules(settings.RULES_DIR)
        rules, load_errors = pack["rules"], pack["errors"]

    report = evaluate_rules_with_diagnostics(rules, body.snapshot, body.scope)
    summary = aggregate_theme_scores(report.applied)
    return {
        "applied": [r.model_dump() for r in report.applied],
        "summary": summary.model_dump(),
        "top_themes": ranked_themes(summary, top_n=body.top_n),
        "diagnostics": {
            "pending": report.pending,
            "errors": report.errors,
            "load_errors": load_errors,
        },
    }


@app.post("/rules/validate")
def rules_validate(body: ValidateIn):
    try:
        validate_condition_tree(body.condition_tree)
    except ConditionTreeError as ex:
        return {"valid": False, "error": str(ex)}
    return {"valid": True, "operators": list(leaf_operators(body.condition_tree))}


@app.post("/signals/aggregate")
def signals_aggregate(body: SignalsIn):
    rules = body.rules if body.rules is not None else load_rules(settings.RULES_DIR)["rules"]
    result = aggregate_signals(rules, body.snapshot, body.domains or DOMAINS)
    return {"signals": [s.model_dump() for s in result]}


# ----- dasha -----
@app.post("/dasha/periods")
def dasha_periods(body: PeriodsIn):
    try:
        count = body.count if body.count is not None else settings.DASHA_MIN_PERIODS
        periods = generate_periods(_birth(body), _moon(body), count)
    except DashaError as ex:
        logger.warning(f"Dasha calculation failed: {ex}")
        raise HTTPException(status_code=422, detail=str(ex))
    return {"mahadasha": [p.model_dump(by_alias=True, mode="json") for p in periods]}


@app.post("/dasha/sub-periods")
def dasha_sub_periods(body: SubPeriodsIn):
    try:
        periods = generate_sub_periods(body.planet, body.start, body.end)
    except DashaError as ex:
        logger.warning(f"Dasha calculation failed: {ex}")
        raise HTTPException(status_code=422, detail=str(ex))
    return {"periods": [p.model_dump(by_alias=True, mode="json") for p in periods]}


@app.post("/dasha/state")
def dasha_state(body: StateIn):
    try:
        state = state_at(_birth(body), _moon(body), body.at)
    except DashaError as ex:
        logger.warning(f"Dasha calculation failed: {ex}")
        raise HTTPException(status_code=422, detail=str(ex))
    out = {
        level: (p.model_dump(by_alias=True, mode="json") if p else None)
        for level, p in (("mahadasha", state.mahadasha),
                         ("antardasha", state.antardasha),
                         ("pratyantardasha", state.pratyantardasha))
    }
    out["snapshot_fields"] = snapshot_dasha_fields(state)
    return out
