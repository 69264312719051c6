# astrosignals/conditions.py
# ------------------------------------------------------------
# Condition trees: All | Any | Leaf
# - raw author JSON is parsed into a small variant type
# - evaluation is pure, short-circuit, and fail-closed:
#   unknown operators, multi-key leaves and null configs are False
# - leaf configs of the wrong shape may raise; the rule layer
#   catches that and skips the rule
# ------------------------------------------------------------

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .chart_state import ChartState, PlanetFact, normalize_snapshot, planet_name, to_float
from .nakshatra import canonicalize, canonicalize_pada, classify


class ConditionTreeError(ValueError):
    """Raised by the authoring validator for a structurally invalid tree."""


class LeafOperator(str, Enum):
    PLANET_IN_HOUSE = "planet_in_house"
    TRANSIT_PLANET_IN_HOUSE = "transit_planet_in_house"
    PLANET_STRENGTH = "planet_strength"
    TRANSIT_PLANET_STRENGTH = "transit_planet_strength"
    HOUSE_LORD_IN_HOUSE = "house_lord_in_house"
    TRANSIT_HOUSE_LORD_IN_HOUSE = "transit_house_lord_in_house"
    PLANET_IN_NAKSHATRA = "planet_in_nakshatra"
    TRANSIT_PLANET_IN_NAKSHATRA = "transit_planet_in_nakshatra"
    PLANET_IN_NAKSHATRA_GROUP = "planet_in_nakshatra_group"
    TRANSIT_PLANET_IN_NAKSHATRA_GROUP = "transit_planet_in_nakshatra_group"
    DASHA_RUNNING = "dasha_running"
    DASHA_LORD_IN_NAKSHATRA = "dasha_lord_in_nakshatra"
    DASHA_LORD_IN_NAKSHATRA_GROUP = "dasha_lord_in_nakshatra_group"
    OVERALL_BENEFIC_SCORE = "overall_benefic_score"
    OVERALL_MALEFIC_SCORE = "overall_malefic_score"
    GENERIC_CONDITION = "generic_condition"


NAKSHATRA_OPERATORS = frozenset({
    LeafOperator.PLANET_IN_NAKSHATRA,
    LeafOperator.TRANSIT_PLANET_IN_NAKSHATRA,
    LeafOperator.PLANET_IN_NAKSHATRA_GROUP,
    LeafOperator.TRANSIT_PLANET_IN_NAKSHATRA_GROUP,
    LeafOperator.DASHA_LORD_IN_NAKSHATRA,
    LeafOperator.DASHA_LORD_IN_NAKSHATRA_GROUP,
})

# dasha level -> snapshot column holding the running planet
DASHA_LEVEL_FIELDS: Dict[str, str] = {
    "mahadasha": "running_mahadasha_planet",
    "antardasha": "running_antardasha_planet",
    "pratyantardasha": "running_pratyantardasha_planet",
}


# ------------ tree variant ------------
@dataclass(frozen=True)
class AllNode:
    children: Tuple["ConditionNode", ...]


@dataclass(frozen=True)
class AnyNode:
    children: Tuple["ConditionNode", ...]


@dataclass(frozen=True)
class LeafNode:
    operator: LeafOperator
    config: Any


@dataclass(frozen=True)
class InvalidNode:
    """Anything that is not a combinator or a single known operator."""
    reason: str


ConditionNode = Union[AllNode, AnyNode, LeafNode, InvalidNode]

_OPERATORS_BY_KEY: Dict[str, LeafOperator] = {op.value: op for op in LeafOperator}


def parse_condition(raw: Any) -> ConditionNode:
    """Raw JSON -> ConditionNode. Never raises."""
    if isinstance(raw, (AllNode, AnyNode, LeafNode, InvalidNode)):
        return raw
    if not isinstance(raw, Mapping):
        return InvalidNode("node is not an object")
    if isinstance(raw.get("all"), list):
        return AllNode(tuple(parse_condition(c) for c in raw["all"]))
    if isinstance(raw.get("any"), list):
        return AnyNode(tuple(parse_condition(c) for c in raw["any"]))

    keys = list(raw.keys())
    if len(keys) != 1:
        return InvalidNode(f"leaf must have exactly one key, got {len(keys)}")
    op = _OPERATORS_BY_KEY.get(str(keys[0]))
    if op is None:
        return InvalidNode(f"unknown operator '{keys[0]}'")
    return LeafNode(op, raw[keys[0]])


def evaluate(node: Any, state: Any) -> bool:
    """
    Evaluate a condition tree (raw JSON or parsed) against a chart state
    (ChartState or raw snapshot row).
    """
    if not isinstance(state, ChartState):
        state = normalize_snapshot(state)
    return _eval_node(parse_condition(node), state)


def _eval_node(node: ConditionNode, state: ChartState) -> bool:
    if isinstance(node, AllNode):
        # empty conjunction is vacuously true
        return all(_eval_node(c, state) for c in node.children)
    if isinstance(node, AnyNode):
        return any(_eval_node(c, state) for c in node.children)
    if isinstance(node, LeafNode):
        if node.config is None and node.operator is not LeafOperator.GENERIC_CONDITION:
            return False
        return bool(LEAF_EVALUATORS[node.operator](node.config, state))
    return False


# ------------ shared leaf helpers ------------
def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _config(config: Any) -> Mapping[str, Any]:
    return config if isinstance(config, Mapping) else {}


def planets_match(config: Mapping[str, Any], facts: Mapping[str, PlanetFact],
                  matches: Callable[[PlanetFact], bool]) -> bool:
    """
    Count the listed planets whose fact satisfies `matches`.
    match_mode "all": every listed planet must match.
    match_mode "any" (default): at least min(min_planets, len(planets)) must match.
    """
    planets = _as_list(config.get("planet_in"))
    if not planets:
        return False

    min_planets = config.get("min_planets")
    if isinstance(min_planets, (int, float)) and not isinstance(min_planets, bool) and min_planets > 0:
        needed = min(int(min_planets), len(planets))
    else:
        needed = 1

    count = 0
    for p in planets:
        fact = facts.get(planet_name(p) or "")
        if fact is not None and matches(fact):
            count += 1

    if config.get("match_mode") == "all":
        return count == len(planets)
    return count >= needed


def in_range(value: Optional[float], config: Mapping[str, Any]) -> bool:
    """Inclusive [min, max]; an absent bound is open."""
    if value is None:
        return False
    lo = config.get("min")
    hi = config.get("max")
    if lo is not None and value < float(lo):
        return False
    if hi is not None and value > float(hi):
        return False
    return True


def _nakshatra_set(values: Any) -> set:
    return {n for n in (canonicalize(v) for v in _as_list(values)) if n}


def _pada_set(values: Any) -> set:
    return {p for p in (canonicalize_pada(v) for v in _as_list(values)) if p}


def _nakshatra_test(config: Mapping[str, Any]) -> Optional[Callable[[PlanetFact], bool]]:
    wanted = _nakshatra_set(config.get("nakshatra_in"))
    if not wanted:
        return None
    padas = _pada_set(config.get("pada_in"))

    def test(fact: PlanetFact) -> bool:
        if fact.nakshatra not in wanted:
            return False
        return not padas or fact.pada in padas
    return test


def _group_test(config: Mapping[str, Any]) -> Optional[Callable[[PlanetFact], bool]]:
    group = _config(config.get("group"))
    context = group.get("context")
    kinds = group.get("kind")
    kinds = {str(k).lower() for k in (kinds if isinstance(kinds, (list, tuple)) else [kinds]) if k}
    if not context or not kinds:
        return None

    def test(fact: PlanetFact) -> bool:
        if not fact.nakshatra:
            return False
        return classify(context, fact.nakshatra) in kinds
    return test


def running_dasha_planet(state: ChartState, level: Any) -> Optional[str]:
    field = DASHA_LEVEL_FIELDS.get(str(level or "").lower())
    if not field:
        return None
    return planet_name(state.raw.get(field))


def _dasha_lord_fact(config: Mapping[str, Any], state: ChartState) -> Optional[PlanetFact]:
    lord = running_dasha_planet(state, config.get("level"))
    if not lord:
        return None
    source = state.transits if config.get("source") == "transit" else state.planets
    return source.get(lord)


# ------------ leaf evaluators ------------
def _planet_in_house(facts_of: Callable[[ChartState], Mapping[str, PlanetFact]]):
    def check(config: Any, state: ChartState) -> bool:
        cfg = _config(config)
        houses = {int(h) for h in _as_list(cfg.get("house_in"))}
        if not houses:
            return False
        return planets_match(cfg, facts_of(state), lambda f: f.house in houses)
    return check


def _planet_strength(facts_of: Callable[[ChartState], Mapping[str, PlanetFact]]):
    def check(config: Any, state: ChartState) -> bool:
        cfg = _config(config)
        fact = facts_of(state).get(planet_name(cfg.get("planet")) or "")
        return fact is not None and in_range(fact.strength, cfg)
    return check


def _house_lord_in_house(facts_of: Callable[[ChartState], Mapping[str, PlanetFact]]):
    def check(config: Any, state: ChartState) -> bool:
        cfg = _config(config)
        if cfg.get("house") is None:
            return False
        targets = {int(h) for h in _as_list(cfg.get("lord_house_in"))}
        lord = state.house_lord(int(cfg["house"]))
        if not lord or not targets:
            return False
        fact = facts_of(state).get(lord)
        return fact is not None and fact.house in targets
    return check


def _planet_in_nakshatra(facts_of: Callable[[ChartState], Mapping[str, PlanetFact]]):
    def check(config: Any, state: ChartState) -> bool:
        cfg = _config(config)
        test = _nakshatra_test(cfg)
        return test is not None and planets_match(cfg, facts_of(state), test)
    return check


def _planet_in_nakshatra_group(facts_of: Callable[[ChartState], Mapping[str, PlanetFact]]):
    def check(config: Any, state: ChartState) -> bool:
        cfg = _config(config)
        test = _group_test(cfg)
        return test is not None and planets_match(cfg, facts_of(state), test)
    return check


def check_dasha_running(config: Any, state: ChartState) -> bool:
    cfg = _config(config)
    running = running_dasha_planet(state, cfg.get("level"))
    if not running:
        return False
    wanted = {planet_name(p) for p in _as_list(cfg.get("planet_in"))}
    return running in wanted


def check_dasha_lord_in_nakshatra(config: Any, state: ChartState) -> bool:
    cfg = _config(config)
    test = _nakshatra_test(cfg)
    fact = _dasha_lord_fact(cfg, state)
    return test is not None and fact is not None and test(fact)


def check_dasha_lord_in_nakshatra_group(config: Any, state: ChartState) -> bool:
    cfg = _config(config)
    test = _group_test(cfg)
    fact = _dasha_lord_fact(cfg, state)
    return test is not None and fact is not None and test(fact)


def _overall_score(field: str):
    def check(config: Any, state: ChartState) -> bool:
        return in_range(to_float(state.raw.get(field)), _config(config))
    return check


def check_generic_condition(config: Any, state: ChartState) -> bool:
    # escape hatch for draft rules
    return True


def _natal(state: ChartState) -> Mapping[str, PlanetFact]:
    return state.planets


def _transit(state: ChartState) -> Mapping[str, PlanetFact]:
    return state.transits


LEAF_EVALUATORS: Dict[LeafOperator, Callable[[Any, ChartState], bool]] = {
    LeafOperator.PLANET_IN_HOUSE: _planet_in_house(_natal),
    LeafOperator.TRANSIT_PLANET_IN_HOUSE: _planet_in_house(_transit),
    LeafOperator.PLANET_STRENGTH: _planet_strength(_natal),
    LeafOperator.TRANSIT_PLANET_STRENGTH: _planet_strength(_transit),
    LeafOperator.HOUSE_LORD_IN_HOUSE: _house_lord_in_house(_natal),
    LeafOperator.TRANSIT_HOUSE_LORD_IN_HOUSE: _house_lord_in_house(_transit),
    LeafOperator.PLANET_IN_NAKSHATRA: _planet_in_nakshatra(_natal),
    LeafOperator.TRANSIT_PLANET_IN_NAKSHATRA: _planet_in_nakshatra(_transit),
    LeafOperator.PLANET_IN_NAKSHATRA_GROUP: _planet_in_nakshatra_group(_natal),
    LeafOperator.TRANSIT_PLANET_IN_NAKSHATRA_GROUP: _planet_in_nakshatra_group(_transit),
    LeafOperator.DASHA_RUNNING: check_dasha_running,
    LeafOperator.DASHA_LORD_IN_NAKSHATRA: check_dasha_lord_in_nakshatra,
    LeafOperator.DASHA_LORD_IN_NAKSHATRA_GROUP: check_dasha_lord_in_nakshatra_group,
    LeafOperator.OVERALL_BENEFIC_SCORE: _overall_score("overall_benefic_score"),
    LeafOperator.OVERALL_MALEFIC_SCORE: _overall_score("overall_malefic_score"),
    LeafOperator.GENERIC_CONDITION: check_generic_condition,
}

_missing = set(LeafOperator) - set(LEAF_EVALUATORS)
if _missing:
    raise RuntimeError(f"No evaluator registered for: {sorted(op.value for op in _missing)}")


# ------------ authoring checks ------------
def validate_condition_tree(node: Any, path: str = "condition_tree") -> None:
    """Strict structural check for authored trees; raises ConditionTreeError."""
    if not isinstance(node, Mapping):
        raise ConditionTreeError(f"{path} must be an object")
    if isinstance(node.get("all"), list):
        for idx, child in enumerate(node["all"]):
            validate_condition_tree(child, f"{path}.all[{idx}]")
        return
    if isinstance(node.get("any"), list):
        for idx, child in enumerate(node["any"]):
            validate_condition_tree(child, f"{path}.any[{idx}]")
        return

    keys = list(node.keys())
    if len(keys) != 1:
        raise ConditionTreeError(f"{path} leaf must have exactly one key")
    if str(keys[0]) not in _OPERATORS_BY_KEY:
        raise ConditionTreeError(f"{path} uses unsupported leaf operator: {keys[0]}")


def condition_tree_uses_nakshatra(node: Any) -> bool:
    def walk(n: ConditionNode) -> bool:
        if isinstance(n, (AllNode, AnyNode)):
            return any(walk(c) for c in n.children)
        return isinstance(n, LeafNode) and n.operator in NAKSHATRA_OPERATORS
    return walk(parse_condition(node))


def leaf_operators(node: Any) -> Sequence[str]:
    """Operator names used by a tree, in first-seen order."""
    seen: List[str] = []

    def walk(n: ConditionNode) -> None:
        if isinstance(n, (AllNode, AnyNode)):
            for c in n.children:
                walk(c)
        elif isinstance(n, LeafNode) and n.operator.value not in seen:
            seen.append(n.operator.value)
    walk(parse_condition(node))
    return seen
