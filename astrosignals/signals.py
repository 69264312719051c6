# astrosignals/signals.py
# ------------------------------------------------------------
# Domain signals from the layered rule set
# - BASE rules form the core signal of each life domain
# - NAKSHATRA / STRENGTH / YOGA rules scale BASE intensity via base_rule_ids
# - DASHA / TRANSIT rules are traced only
# - PENDING_OPERATOR rules are listed, never computed
# ------------------------------------------------------------

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, Field

from .chart_state import ChartState, normalize_snapshot, to_float
from .conditions import evaluate
from .rules_engine import ENGINE_PENDING_OPERATOR, ENGINE_READY, Rule, as_rule

logger = logging.getLogger(__name__)

DOMAINS: tuple = (
    "money_finance", "career_direction", "relationships", "family_home", "health_body",
    "mental_state", "spiritual_growth", "timing_luck", "events_changes", "self_identity",
)

# effect theme -> domain; "general" applies everywhere
THEME_DOMAIN: Dict[str, str] = {
    "money": "money_finance",
    "career": "career_direction",
    "relationship": "relationships",
    "health": "health_body",
    "spirituality": "spiritual_growth",
    "family": "family_home",
    "mental": "mental_state",
}

LAYERS: tuple = ("BASE", "NAKSHATRA", "DASHA", "TRANSIT", "STRENGTH", "YOGA")

DEFAULT_INTENSITY = 0.5

# BASE rule count -> confidence, first bound that fits
CONFIDENCE_STEPS: tuple = ((0, 0.0), (1, 0.3), (3, 0.5), (5, 0.7))
CONFIDENCE_TOP = 0.9
NAKSHATRA_CONFIDENCE_BONUS = 0.05
CONFIDENCE_CAP = 0.95


class SummaryMetrics(BaseModel):
    pressure: str = "medium"
    support: str = "medium"
    stability: str = "medium"
    confidence: float = 0.0


class RuleTrace(BaseModel):
    base_rules_applied: List[Union[int, str]] = Field(default_factory=list)
    nakshatra_rules_applied: List[Union[int, str]] = Field(default_factory=list)
    dasha_rules_applied: List[Union[int, str]] = Field(default_factory=list)
    transit_rules_applied: List[Union[int, str]] = Field(default_factory=list)
    strength_rules_applied: List[Union[int, str]] = Field(default_factory=list)
    yoga_rules_applied: List[Union[int, str]] = Field(default_factory=list)
    pending_rules: List[Union[int, str]] = Field(default_factory=list)


class DomainSignal(BaseModel):
    domain: str
    summary_metrics: SummaryMetrics = Field(default_factory=SummaryMetrics)
    themes: List[str] = Field(default_factory=list)
    rule_trace: RuleTrace = Field(default_factory=RuleTrace)
    layer_status: Dict[str, str] = Field(default_factory=dict)
    layer_counts: Dict[str, int] = Field(default_factory=dict)


def domain_for_theme(theme: Optional[str]) -> Optional[str]:
    return THEME_DOMAIN.get(theme or "")


def applies_to_domain(theme: Optional[str], domain: str) -> bool:
    theme = theme or "general"
    mapped = domain_for_theme(theme)
    if mapped:
        return mapped == domain
    return theme == "general"


def _level(intensity: float) -> str:
    if intensity >= 0.7:
        return "high"
    if intensity >= 0.4:
        return "medium"
    return "low"


def compute_pressure(intensity: float, trend: Optional[str]) -> str:
    if trend in ("up", "positive"):
        return "low"
    return _level(intensity)


def compute_support(intensity: float, trend: Optional[str]) -> str:
    if trend in ("down", "negative"):
        return "low"
    return _level(intensity)


def compute_stability(effect: Mapping[str, Any]) -> str:
    if effect.get("stability"):
        s = str(effect["stability"]).lower()
        if s in ("high", "stable"):
            return "high"
        if s in ("low", "unstable"):
            return "low"
        return "medium"
    trend = effect.get("trend")
    if trend in ("stable", "neutral"):
        return "high"
    if trend in ("volatile", "mixed"):
        return "low"
    return "medium"


def dominant_trend(trends: Sequence[str]) -> str:
    """Most frequent trend; a tie goes to the trend first seen later. None -> "mixed"."""
    counts: Dict[str, int] = {}
    for t in trends:
        counts[t] = counts.get(t, 0) + 1
    best = None
    for t in counts:
        if best is None or not counts[best] > counts[t]:
            best = t
    return best or "mixed"


def confidence_for(base_count: int, nakshatra_active: bool) -> float:
    confidence = CONFIDENCE_TOP
    for bound, value in CONFIDENCE_STEPS:
        if base_count <= bound:
            confidence = value
            break
    if nakshatra_active and confidence > 0:
        confidence = min(CONFIDENCE_CAP, confidence + NAKSHATRA_CONFIDENCE_BONUS)
    return round(confidence, 2)


def base_rule_ids(rule: Rule) -> List[str]:
    """base_rule_ids as strings; accepts a list or a JSON-encoded list."""
    ids = rule.base_rule_ids
    if isinstance(ids, str):
        try:
            ids = json.loads(ids)
        except ValueError:
            return []
    if not isinstance(ids, list):
        return []
    return [str(i) for i in ids]


def _trace_id(rule: Rule) -> Union[int, str]:
    return rule.rule_id or rule.id


def _link_id(rule: Rule) -> str:
    return str(rule.rule_id) if rule.rule_id else str(rule.id)


def _layer(rule: Rule) -> Optional[str]:
    layer = (rule.rule_type or "BASE").upper()
    if layer == "BASE":
        return layer
    if layer in LAYERS and rule.engine_status in (None, ENGINE_READY):
        return layer
    return None


def _matching_rules(rules: Sequence[Any], state: ChartState) -> List[Rule]:
    out: List[Rule] = []
    for raw in rules or []:
        rid = raw.get("id") if isinstance(raw, Mapping) else getattr(raw, "id", None)
        try:
            rule = as_rule(raw)
            if not rule.is_active:
                continue
            if rule.engine_status not in (None, ENGINE_READY, ENGINE_PENDING_OPERATOR):
                continue
            if evaluate(rule.condition_tree, state):
                out.append(rule)
        except Exception as ex:
            logger.warning(f"Rule {rid} skipped for signals: evaluation failed: {ex!r}")
    return out


def _scaled_intensity(rule: Rule, modifiers: Sequence[Tuple[Rule, str]], themes: Dict[str, None]) -> float:
    intensity = to_float(rule.effect.get("intensity")) or DEFAULT_INTENSITY
    link = _link_id(rule)
    for mod, field in modifiers:
        if link not in base_rule_ids(mod):
            continue
        intensity *= to_float(mod.effect.get(field)) or 1.0
        if field == "intensity_refinement" and mod.effect.get("theme"):
            themes[mod.effect["theme"]] = None
    return intensity


def aggregate_domain_signal(domain: str, matched: Sequence[Rule]) -> DomainSignal:
    """One domain's signal from rules that already matched the chart state."""
    layers: Dict[str, List[Rule]] = {name: [] for name in LAYERS}
    trace = RuleTrace()

    for rule in matched:
        if not applies_to_domain(rule.effect.get("theme"), domain):
            continue
        if rule.engine_status == ENGINE_PENDING_OPERATOR:
            trace.pending_rules.append(_trace_id(rule))
            continue
        layer = _layer(rule)
        if layer is None:
            continue
        layers[layer].append(rule)
        getattr(trace, f"{layer.lower()}_rules_applied").append(_trace_id(rule))

    # NAKSHATRA first, then STRENGTH, then YOGA
    modifiers = [(r, "intensity_refinement") for r in layers["NAKSHATRA"]]
    modifiers += [(r, "intensity_multiplier") for r in layers["STRENGTH"] + layers["YOGA"]]

    total_intensity = 0.0
    total_weight = 0.0
    trends: List[str] = []
    themes: Dict[str, None] = {}
    for rule in layers["BASE"]:
        intensity = _scaled_intensity(rule, modifiers, themes)
        weight = rule.base_weight or 1.0
        total_intensity += intensity * weight
        total_weight += weight
        if rule.effect.get("trend"):
            trends.append(rule.effect["trend"])
        themes[rule.effect.get("theme") or "general"] = None

    avg = total_intensity / total_weight if total_weight > 0 else DEFAULT_INTENSITY
    trend = dominant_trend(trends)

    stability = "medium"
    if layers["BASE"]:
        values = [compute_stability(r.effect) for r in layers["BASE"]]
        high, low = values.count("high"), values.count("low")
        if high > low:
            stability = "high"
        elif low > high:
            stability = "low"

    return DomainSignal(
        domain=domain,
        summary_metrics=SummaryMetrics(
            pressure=compute_pressure(avg, trend),
            support=compute_support(avg, trend),
            stability=stability,
            confidence=confidence_for(len(layers["BASE"]), bool(layers["NAKSHATRA"])),
        ),
        themes=list(themes),
        rule_trace=trace,
        layer_status={name: "active" if layers[name] else "inactive" for name in LAYERS},
        layer_counts={name: len(layers[name]) for name in LAYERS},
    )


def aggregate_signals(rules: Sequence[Union[Rule, Mapping[str, Any]]], snapshot: Any,
                      domains: Sequence[str] = DOMAINS) -> List[DomainSignal]:
    """
    Evaluate every rule once against the snapshot, then build one
    DomainSignal per domain. Rules that fail to evaluate are skipped.
    """
    state = normalize_snapshot(snapshot)
    matched = _matching_rules(rules, state)
    logger.debug(f"Signals: {len(matched)} of {len(rules or [])} rules matched")
    return [aggregate_domain_signal(d, matched) for d in domains]
