# astrosignals/rules_engine.py
# ------------------------------------------------------------
# Rule evaluation around condition trees
# - active / scope / engine_status filters
# - score = clamp01(intensity) * max(0, base_weight)
# - one bad rule is logged and skipped, never aborts the batch
# - JSON rule packs (bad files skipped, reported via errors)
# ------------------------------------------------------------

import json
import logging
import os
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from jsonschema import Draft7Validator
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .chart_state import ChartState, normalize_snapshot
from .conditions import ConditionTreeError, evaluate, validate_condition_tree

logger = logging.getLogger(__name__)

ENGINE_READY = "READY"
ENGINE_PENDING_OPERATOR = "PENDING_OPERATOR"


class Rule(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Union[int, str]
    rule_id: Optional[Union[int, str]] = None
    rule_type: Optional[str] = None
    condition_tree: Optional[Any] = Field(
        default=None, validation_alias=AliasChoices("condition_tree", "conditionTree"))
    effect: Dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("effect_json", "effectJson", "effect"))
    applicable_scopes: List[str] = Field(default_factory=list)
    is_active: bool = True
    engine_status: Optional[str] = None
    base_weight: Optional[float] = 1.0
    base_rule_ids: Optional[Any] = None
    point_code: Optional[str] = None

    # stored rows may carry NULL in these columns
    @field_validator("effect", mode="before")
    @classmethod
    def effect_or_empty(cls, v):
        return v if isinstance(v, Mapping) else {}

    @field_validator("applicable_scopes", mode="before")
    @classmethod
    def scopes_or_empty(cls, v):
        return v if isinstance(v, (list, tuple)) else []

    @field_validator("is_active", mode="before")
    @classmethod
    def active_unless_false(cls, v):
        return v is not False


class EvaluatedRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    rule_id: Union[int, str]
    point_code: Optional[str] = None
    theme: Optional[str] = None
    area: Optional[str] = None
    trend: Optional[str] = None
    tone: Optional[str] = None
    score: float
    weight: float
    effect: Dict[str, Any] = Field(default_factory=dict)


class EvaluationReport(BaseModel):
    applied: List[EvaluatedRule] = Field(default_factory=list)
    pending: List[Union[int, str]] = Field(default_factory=list)
    errors: List[Dict[str, Any]] = Field(default_factory=list)


def as_rule(rule: Union[Rule, Mapping[str, Any]]) -> Rule:
    return rule if isinstance(rule, Rule) else Rule.model_validate(rule)


def rule_score(rule: Rule) -> float:
    intensity = rule.effect.get("intensity")
    if not isinstance(intensity, (int, float)) or isinstance(intensity, bool):
        intensity = 1.0
    intensity = max(0.0, min(1.0, float(intensity)))
    base_weight = rule.base_weight if rule.base_weight is not None else 1.0
    return intensity * max(0.0, base_weight)


def _skip_reason(rule: Rule, scope: Optional[str]) -> Optional[str]:
    if not rule.is_active:
        return "inactive"
    if scope and rule.applicable_scopes and scope not in rule.applicable_scopes:
        return "out_of_scope"
    if rule.engine_status == ENGINE_PENDING_OPERATOR:
        return "pending_operator"
    if not rule.condition_tree:
        return "no_condition_tree"
    return None


def _matched(rule: Rule, state: ChartState) -> EvaluatedRule:
    weight = rule.base_weight if rule.base_weight is not None else 1.0
    e = rule.effect
    return EvaluatedRule(
        rule_id=rule.id,
        point_code=rule.point_code,
        theme=e.get("theme"),
        area=e.get("area"),
        trend=e.get("trend"),
        tone=e.get("tone"),
        score=rule_score(rule),
        weight=max(0.0, weight),
        effect=dict(e),
    )


def evaluate_rule(rule: Union[Rule, Mapping[str, Any]], state: Any,
                  scope: Optional[str] = None) -> Optional[EvaluatedRule]:
    """Evaluate one rule; None when filtered out, not matched, or broken."""
    rid = rule.get("id") if isinstance(rule, Mapping) else getattr(rule, "id", None)
    try:
        r = as_rule(rule)
        if _skip_reason(r, scope):
            return None
        if not isinstance(state, ChartState):
            state = normalize_snapshot(state)
        if not evaluate(r.condition_tree, state):
            return None
        return _matched(r, state)
    except Exception as ex:
        logger.warning(f"Rule {rid} skipped: evaluation failed: {ex!r}")
        return None


def evaluate_rules_with_diagnostics(rules: Sequence[Union[Rule, Mapping[str, Any]]],
                                    snapshot: Any, scope: Optional[str] = None) -> EvaluationReport:
    """Evaluate a batch against one snapshot, keeping track of pending and failed rules."""
    state = normalize_snapshot(snapshot)
    report = EvaluationReport()

    for raw in rules or []:
        rid = raw.get("id") if isinstance(raw, Mapping) else getattr(raw, "id", None)
        try:
            rule = as_rule(raw)
            reason = _skip_reason(rule, scope)
            if reason == "pending_operator":
                logger.debug(f"Rule {rule.id} skipped: engine_status={ENGINE_PENDING_OPERATOR}")
                report.pending.append(rule.id)
                continue
            if reason or not evaluate(rule.condition_tree, state):
                continue
            report.applied.append(_matched(rule, state))
        except Exception as ex:
            logger.warning(f"Rule {rid} skipped: evaluation failed: {ex!r}")
            report.errors.append({"rule_id": rid, "error": str(ex)})

    return report


def evaluate_rules(rules: Sequence[Union[Rule, Mapping[str, Any]]], snapshot: Any,
                   scope: Optional[str] = None) -> List[EvaluatedRule]:
    return evaluate_rules_with_diagnostics(rules, snapshot, scope).applied


# ------------ rule packs ------------
RULE_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Astro Signal Rule",
    "type": "object",
    "required": ["id", "condition_tree"],
    "properties": {
        "id": {"type": ["string", "integer"]},
        "point_code": {"type": ["string", "null"]},
        "condition_tree": {"type": "object"},
        "rule_id": {"type": ["string", "integer", "null"]},
        "rule_type": {"enum": ["BASE", "NAKSHATRA", "DASHA", "TRANSIT", "STRENGTH", "YOGA", None]},
        "base_rule_ids": {"type": ["array", "string", "null"]},
        "effect_json": {
            "type": ["object", "null"],
            "properties": {
                "theme": {"type": ["string", "null"]},
                "area": {"type": ["string", "null"]},
                "trend": {"type": ["string", "null"]},
                "tone": {"type": ["string", "null"]},
                "intensity": {"type": "number", "minimum": 0, "maximum": 1},
            },
        },
        "applicable_scopes": {"type": ["array", "null"], "items": {"type": "string"}},
        "is_active": {"type": ["boolean", "null"]},
        "engine_status": {"enum": [ENGINE_READY, ENGINE_PENDING_OPERATOR, None]},
        "base_weight": {"type": "number", "minimum": 0},
    },
}
_RULE_VALIDATOR = Draft7Validator(RULE_SCHEMA)


def rule_document_errors(doc: Any) -> List[str]:
    """Schema + condition-tree problems for one authored rule; [] when clean."""
    errors = [e.message for e in sorted(_RULE_VALIDATOR.iter_errors(doc), key=lambda e: list(e.path))]
    if errors:
        return errors
    try:
        validate_condition_tree(doc["condition_tree"])
    except ConditionTreeError as ex:
        errors.append(str(ex))
    return errors


def load_rules(directory: str) -> Dict[str, Any]:
    """
    Load every *.json under `directory` (one rule object or a list per file).
    Invalid files/rules and duplicate ids are skipped and listed in `errors`.
    """
    rules: Dict[Any, Rule] = {}
    errors: List[Dict[str, Any]] = []

    if not os.path.isdir(directory):
        errors.append({"file": directory, "error": "rules directory not found"})
        logger.warning(f"Rules directory not found: {directory}")
        return {"rules": [], "errors": errors}

    for fname in sorted(os.listdir(directory)):
        if not fname.lower().endswith(".json"):
            continue
        path = os.path.join(directory, fname)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as ex:
            errors.append({"file": fname, "error": f"JSON parse error: {ex}"})
            continue

        docs = data if isinstance(data, list) else [data]
        for doc in docs:
            problems = rule_document_errors(doc)
            if problems:
                errors.append({"file": fname, "error": "; ".join(problems)})
                continue
            rule = Rule.model_validate(doc)
            if rule.id in rules:
                errors.append({"file": fname, "error": f"Duplicate rule id '{rule.id}' (already loaded)"})
                continue
            rules[rule.id] = rule

    for e in errors:
        logger.warning(f"Rule pack: {e['file']}: {e['error']}")
    logger.info(f"Loaded {len(rules)} rules from {directory} ({len(errors)} errors)")
    return {"rules": list(rules.values()), "errors": errors}
