import pytest

from astrosignals import conditions
from astrosignals.chart_state import normalize_snapshot
from astrosignals.conditions import (
    AllNode, AnyNode, InvalidNode, LeafNode, LeafOperator, evaluate, parse_condition,
)


@pytest.fixture
def state():
    return normalize_snapshot({
        "planets_state": [
            {"planet": "JUPITER", "house": 2, "sign": 8, "nakshatra": "ANURADHA", "pada": 2, "strength": 0.7},
            {"planet": "VENUS", "house": 7, "sign": 2, "nakshatra": "ROHINI", "pada": 1, "strength": 0.4},
            {"planet": "MERCURY", "house": 10, "sign": 5, "nakshatra": "MAGHA", "strength": 0.55},
            {"planet": "SATURN", "house": 11, "sign": 11, "nakshatra": "SHATABHISHA"},
        ],
        "transits_state": {
            "JUPITER": {"house": 11, "nakshatra": "PUSHYA", "pada": 4, "strength": 0.9},
            "SATURN": {"house": 8, "nakshatra": "MULA", "strength": 0.2},
            "VENUS": {"house": 10, "nakshatra": "BHARANI"},
        },
        # Aries lagna: house n is sign n
        "lagna_sign": 1,
        "running_mahadasha_planet": 5,          # JUPITER
        "running_antardasha_planet": "SATURN",
        "overall_benefic_score": 0.62,
        "overall_malefic_score": 0.3,
    })


def test_jupiter_in_house_scenario():
    rule = {"planet_in_house": {"planet_in": ["JUPITER"], "house_in": [2, 11]}}
    assert evaluate(rule, {"planets_state": [{"planet": "JUPITER", "house": 2}]}) is True
    assert evaluate(rule, {"planets_state": [{"planet": "JUPITER", "house": 5}]}) is False


def test_combinators_and_fail_closed(state):
    assert evaluate({"all": []}, state) is True
    assert evaluate({"any": []}, state) is False
    assert evaluate({"unknownOp": {}}, state) is False
    assert evaluate({"planet_in_house": {"planet_in": ["JUPITER"], "house_in": [2]}, "extra": 1}, state) is False
    assert evaluate({}, state) is False
    assert evaluate(None, state) is False
    assert evaluate({"all": "not-a-list"}, state) is False
    assert evaluate({"planet_in_house": None}, state) is False

    yes = {"generic_condition": {}}
    no = {"unknownOp": {}}
    assert evaluate({"all": [yes, yes]}, state) is True
    assert evaluate({"all": [yes, no]}, state) is False
    assert evaluate({"any": [no, yes]}, state) is True
    assert evaluate({"any": [{"all": [yes, {"any": []}]}, {"all": []}]}, state) is True


def test_short_circuit(monkeypatch, state):
    calls = []

    def spy(config, st):
        calls.append(config)
        return config["result"]

    monkeypatch.setitem(conditions.LEAF_EVALUATORS, LeafOperator.GENERIC_CONDITION, spy)
    leaf = lambda v: {"generic_condition": {"result": v}}

    assert evaluate({"all": [leaf(False), leaf(True)]}, state) is False
    assert len(calls) == 1
    calls.clear()
    assert evaluate({"any": [leaf(True), leaf(False)]}, state) is True
    assert len(calls) == 1


def test_parse_condition_variants():
    node = parse_condition({"all": [{"any": []}, {"dasha_running": {"level": "mahadasha"}}, {"bogus": 1}]})
    assert isinstance(node, AllNode)
    assert isinstance(node.children[0], AnyNode)
    assert node.children[1] == LeafNode(LeafOperator.DASHA_RUNNING, {"level": "mahadasha"})
    assert isinstance(node.children[2], InvalidNode)
    assert isinstance(parse_condition([1, 2]), InvalidNode)


def test_every_operator_has_an_evaluator():
    assert set(conditions.LEAF_EVALUATORS) == set(LeafOperator)


def test_planet_in_house_modes(state):
    cfg = {"planet_in": ["JUPITER", "VENUS", "MERCURY"], "house_in": [2, 7]}
    assert evaluate({"planet_in_house": cfg}, state) is True
    assert evaluate({"planet_in_house": {**cfg, "min_planets": 2}}, state) is True
    assert evaluate({"planet_in_house": {**cfg, "min_planets": 3}}, state) is False
    # min_planets is capped at the list length
    assert evaluate({"planet_in_house": {"planet_in": ["JUPITER"], "house_in": [2], "min_planets": 5}}, state) is True
    assert evaluate({"planet_in_house": {**cfg, "match_mode": "all"}}, state) is False
    assert evaluate({"planet_in_house": {**cfg, "house_in": [2, 7, 10], "match_mode": "all"}}, state) is True
    # unknown planet never matches; empty lists are false
    assert evaluate({"planet_in_house": {"planet_in": ["PLUTO"], "house_in": [2]}}, state) is False
    assert evaluate({"planet_in_house": {"planet_in": [], "house_in": [2]}}, state) is False
    assert evaluate({"planet_in_house": {"planet_in": ["JUPITER"], "house_in": []}}, state) is False


def test_transit_planet_in_house(state):
    assert evaluate({"transit_planet_in_house": {"planet_in": ["JUPITER", "VENUS"], "house_in": [10, 11],
                                                 "match_mode": "all"}}, state) is True
    assert evaluate({"transit_planet_in_house": {"planet_in": ["SATURN"], "house_in": [11]}}, state) is False


def test_malformed_leaf_config_raises(state):
    with pytest.raises(ValueError):
        evaluate({"planet_in_house": {"planet_in": ["JUPITER"], "house_in": ["second"]}}, state)


def test_planet_strength(state):
    assert evaluate({"planet_strength": {"planet": "JUPITER", "min": 0.5}}, state) is True
    assert evaluate({"planet_strength": {"planet": "VENUS", "min": 0.5}}, state) is False
    assert evaluate({"planet_strength": {"planet": "JUPITER", "min": 0.7, "max": 0.7}}, state) is True
    assert evaluate({"planet_strength": {"planet": "jupiter"}}, state) is True
    # no strength recorded
    assert evaluate({"planet_strength": {"planet": "SATURN"}}, state) is False
    assert evaluate({"transit_planet_strength": {"planet": "SATURN", "max": 0.25}}, state) is True
    assert evaluate({"transit_planet_strength": {"planet": "JUPITER", "max": 0.5}}, state) is False


def test_house_lord_in_house(state):
    # Aries lagna: 8th is Scorpio (MARS, absent); 2nd is Taurus (VENUS in 7)
    assert evaluate({"house_lord_in_house": {"house": 2, "lord_house_in": [7, 11]}}, state) is True
    assert evaluate({"house_lord_in_house": {"house": 2, "lord_house_in": [1]}}, state) is False
    assert evaluate({"house_lord_in_house": {"house": 8, "lord_house_in": [7]}}, state) is False
    # 9th is Sagittarius -> JUPITER, transiting house 11
    assert evaluate({"transit_house_lord_in_house": {"house": 9, "lord_house_in": [11]}}, state) is True
    assert evaluate({"house_lord_in_house": {"lord_house_in": [2]}}, state) is False


def test_house_lord_needs_houses():
    st = normalize_snapshot({"planets_state": [{"planet": "VENUS", "house": 7}]})
    assert evaluate({"house_lord_in_house": {"house": 2, "lord_house_in": [7]}}, st) is False
    st = normalize_snapshot({
        "planets_state": [{"planet": "VENUS", "house": 7}],
        "houses_state": [{"house": 2, "sign": "Libra"}],
    })
    assert evaluate({"house_lord_in_house": {"house": 2, "lord_house_in": [7]}}, st) is True


def test_planet_in_nakshatra(state):
    cfg = {"planet_in": ["JUPITER", "VENUS"], "nakshatra_in": ["anuradha", 4]}
    assert evaluate({"planet_in_nakshatra": cfg}, state) is True
    assert evaluate({"planet_in_nakshatra": {**cfg, "match_mode": "all"}}, state) is True
    assert evaluate({"planet_in_nakshatra": {**cfg, "pada_in": [2], "match_mode": "all"}}, state) is False
    assert evaluate({"planet_in_nakshatra": {**cfg, "pada_in": [2]}}, state) is True
    assert evaluate({"planet_in_nakshatra": {"planet_in": ["JUPITER"], "nakshatra_in": ["Atlantis"]}}, state) is False
    assert evaluate({"transit_planet_in_nakshatra": {"planet_in": ["SATURN"], "nakshatra_in": ["MULA"]}}, state) is True


def test_planet_in_nakshatra_group(state):
    supportive = {"context": "finance", "kind": "supportive"}
    assert evaluate({"planet_in_nakshatra_group": {"planet_in": ["JUPITER", "VENUS"], "group": supportive,
                                                   "match_mode": "all"}}, state) is True
    assert evaluate({"planet_in_nakshatra_group": {"planet_in": ["MERCURY"], "group": supportive}}, state) is False
    assert evaluate({"planet_in_nakshatra_group": {"planet_in": ["MERCURY"],
                                                   "group": {"context": "finance", "kind": "neutral"}}}, state) is True
    assert evaluate({"transit_planet_in_nakshatra_group": {
        "planet_in": ["SATURN", "VENUS"],
        "group": {"context": "health", "kind": ["sensitive", "obstructive"]},
        "match_mode": "all"}}, state) is True
    assert evaluate({"planet_in_nakshatra_group": {"planet_in": ["JUPITER"], "group": {"context": "finance"}}},
                    state) is False


def test_dasha_running(state):
    assert evaluate({"dasha_running": {"level": "mahadasha", "planet_in": [5, 7]}}, state) is True
    assert evaluate({"dasha_running": {"level": "mahadasha", "planet_in": ["jupiter"]}}, state) is True
    assert evaluate({"dasha_running": {"level": "antardasha", "planet_in": [7]}}, state) is True
    assert evaluate({"dasha_running": {"level": "antardasha", "planet_in": [5]}}, state) is False
    # level not recorded / unknown
    assert evaluate({"dasha_running": {"level": "pratyantardasha", "planet_in": [5]}}, state) is False
    assert evaluate({"dasha_running": {"level": "yearly", "planet_in": [5]}}, state) is False


def test_dasha_lord_in_nakshatra(state):
    assert evaluate({"dasha_lord_in_nakshatra": {"level": "mahadasha", "nakshatra_in": ["ANURADHA"]}}, state) is True
    assert evaluate({"dasha_lord_in_nakshatra": {"level": "mahadasha", "nakshatra_in": ["ANURADHA"],
                                                 "pada_in": [1]}}, state) is False
    assert evaluate({"dasha_lord_in_nakshatra": {"level": "mahadasha", "nakshatra_in": ["PUSHYA"],
                                                 "source": "transit"}}, state) is True
    assert evaluate({"dasha_lord_in_nakshatra": {"level": "pratyantardasha", "nakshatra_in": ["ANURADHA"]}},
                    state) is False


def test_dasha_lord_in_nakshatra_group(state):
    group = {"context": "career", "kind": "supportive"}
    assert evaluate({"dasha_lord_in_nakshatra_group": {"level": "mahadasha", "group": group}}, state) is True
    assert evaluate({"dasha_lord_in_nakshatra_group": {"level": "antardasha", "group": group}}, state) is False
    assert evaluate({"dasha_lord_in_nakshatra_group": {
        "level": "antardasha", "group": {"context": "career", "kind": "sensitive"}, "source": "transit"}},
        state) is True


def test_overall_scores(state):
    assert evaluate({"overall_benefic_score": {"min": 0.55}}, state) is True
    assert evaluate({"overall_benefic_score": {"min": 0.7}}, state) is False
    assert evaluate({"overall_malefic_score": {"max": 0.3}}, state) is True
    assert evaluate({"overall_malefic_score": {"min": 0.31}}, state) is False
    assert evaluate({"overall_benefic_score": {"min": 0.1}}, {"planets_state": []}) is False


def test_generic_condition(state):
    assert evaluate({"generic_condition": {}}, state) is True
    assert evaluate({"generic_condition": None}, state) is True


def test_validate_condition_tree():
    conditions.validate_condition_tree({"all": [{"generic_condition": {}}, {"any": []}]})
    with pytest.raises(conditions.ConditionTreeError, match=r"condition_tree\.all\[1\] uses unsupported"):
        conditions.validate_condition_tree({"all": [{"generic_condition": {}}, {"planet_in_sign": {}}]})
    with pytest.raises(conditions.ConditionTreeError, match="exactly one key"):
        conditions.validate_condition_tree({"a": 1, "b": 2})
    with pytest.raises(conditions.ConditionTreeError, match="must be an object"):
        conditions.validate_condition_tree({"any": ["x"]})


def test_tree_introspection():
    tree = {"all": [{"planet_in_house": {}}, {"any": [{"transit_planet_in_nakshatra_group": {}},
                                                      {"planet_in_house": {}}]}]}
    assert conditions.condition_tree_uses_nakshatra(tree) is True
    assert conditions.condition_tree_uses_nakshatra({"planet_in_house": {}}) is False
    assert conditions.leaf_operators(tree) == ["planet_in_house", "transit_planet_in_nakshatra_group"]
