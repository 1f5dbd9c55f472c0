import logging

import pytest

from rep_engine.condition import (
    NEVER_MATCH,
    Comparison,
    ConditionError,
    compile_fsm,
    parse_condition,
)
from rep_engine.exercise_config import FSMDefinition, Metric


def test_parse_conjunction():
    cond = parse_condition("angle < 100 & velocity < -20")
    assert cond.clauses == (
        Comparison(Metric.ANGLE, "<", 100.0),
        Comparison(Metric.VELOCITY, "<", -20.0),
    )
    assert cond.evaluate({Metric.ANGLE: 90.0, Metric.VELOCITY: -30.0})
    assert not cond.evaluate({Metric.ANGLE: 90.0, Metric.VELOCITY: 0.0})


@pytest.mark.parametrize("text", [
    "angle >= 160 && velocity <= 5",
    "angle >= 160 and velocity <= 5",
    "angle>=160&velocity<=5",
])
def test_separators_and_two_char_operators(text):
    cond = parse_condition(text)
    assert [c.op for c in cond.clauses] == [">=", "<="]
    assert cond.evaluate({Metric.ANGLE: 160.0, Metric.VELOCITY: 5.0})


def test_missing_value_does_not_match():
    assert not parse_condition("backAngle > 150").evaluate({Metric.ANGLE: 170.0})


@pytest.mark.parametrize("text", ["angle <", "angle ~ 5", "100 < angle", "angle < abc"])
def test_malformed_clause_raises(text):
    with pytest.raises(ConditionError):
        parse_condition(text)


def test_unknown_metric_raises():
    with pytest.raises(ConditionError):
        parse_condition("wristTwist > 3")


def test_compile_fsm_replaces_bad_condition(caplog):
    definition = FSMDefinition.model_validate({
        "stateOrder": ["start", "down", "ghost"],
        "states": {
            "start": {"condition": "angle > 160"},
            "down": {"condition": "angle <<< 100"},
        },
        "counter": {"from": "down", "to": "start"},
    })
    with caplog.at_level(logging.WARNING):
        fsm = compile_fsm(definition, "side")
    assert fsm.conditions["down"] is NEVER_MATCH
    assert fsm.conditions["ghost"] is NEVER_MATCH
    assert fsm.match({Metric.ANGLE: 90.0}) is None
    assert fsm.match({Metric.ANGLE: 170.0}) == "start"
    assert len(caplog.records) >= 2
