from rep_engine.calibration import CalibrationBaseline
from rep_engine.exercise_config import ExerciseKind, FeedbackRule, Metric
from rep_engine.feedback_rules import (
    CLEAN_MESSAGE,
    FeedbackFocus,
    FeedbackRuleEngine,
    RiskLevel,
    RuleContext,
    rule_applies,
    score_for,
)


def _rule(rule_id, metric, op, threshold, severity="important", message=None, tags=None):
    return FeedbackRule.model_validate({
        "id": rule_id,
        "severity": severity,
        "message": message or rule_id,
        "metric": metric,
        "op": op,
        "threshold": threshold,
        "appliesIn": tags,
    })


SIDE_FULL = RuleContext(view="side", exercise=ExerciseKind.PUSHUP, portrait=False, focus=FeedbackFocus.FULL_BODY)
FRONT_ARMS = RuleContext(view="front", exercise=ExerciseKind.PUSHUP)


def test_applicability_tags():
    untagged = _rule("a", "backAngle", "lt", 150)
    side_only = _rule("b", "backAngle", "lt", 150, tags=["pushup", "side"])
    squat_only = _rule("c", "kneeValgus", "gt", 0.2, tags=["squat", "front"])
    landscape = _rule("d", "hipDropRatio", "gt", 0.2, tags=["pushup", "front", "landscape"])
    full_body = _rule("e", "hipDropRatio", "gt", 0.2, tags=["side", "fullBody"])

    assert rule_applies(untagged, SIDE_FULL)
    assert rule_applies(side_only, SIDE_FULL)
    assert not rule_applies(squat_only, SIDE_FULL)
    assert not rule_applies(landscape, SIDE_FULL)
    assert rule_applies(full_body, SIDE_FULL)
    assert not rule_applies(landscape, FRONT_ARMS)


def test_arms_only_pushup_uses_front_rules():
    side_arms = RuleContext(view="side", exercise=ExerciseKind.PUSHUP, focus=FeedbackFocus.ARMS_ONLY)
    assert rule_applies(_rule("f", "elbowFlareRatio", "gt", 0.6, tags=["pushup", "front"]), side_arms)
    assert not rule_applies(_rule("s", "backAngle", "lt", 150, tags=["pushup", "side"]), side_arms)


def test_ranking_dedupe_and_messages():
    rules = [
        _rule("minor", "hipRiseRatio", "gt", 0.1, severity="minor", message="Lower hips"),
        _rule("imp", "backAngle", "lt", 160, message="Lift hips"),
        _rule("crit", "backAngle", "lt", 150, severity="critical", message="Lift hips"),
    ]
    engine = FeedbackRuleEngine(rules)
    result = engine.evaluate({Metric.BACK_ANGLE: 140.0, Metric.HIP_RISE_RATIO: 0.2}, SIDE_FULL)

    assert result.matched_ids == ["minor", "imp", "crit"]
    assert result.message == "CRITICAL: Lift hips"
    assert result.secondary == "Also: Lower hips"
    assert result.risk is RiskLevel.CRITICAL
    assert result.score == 100 - 35 - 15 - 5
    assert result.has_critical
    assert result.primary_rule.id == "crit"


def test_clean_result():
    engine = FeedbackRuleEngine([_rule("imp", "backAngle", "lt", 160)])
    result = engine.evaluate({Metric.BACK_ANGLE: 175.0}, SIDE_FULL)
    assert result.matched == ()
    assert result.message == CLEAN_MESSAGE
    assert result.secondary == ""
    assert result.risk is RiskLevel.LOW
    assert result.score == 100


def test_risk_levels():
    engine = FeedbackRuleEngine([_rule("minor", "hipRiseRatio", "gt", 0.1, severity="minor")])
    assert engine.evaluate({Metric.HIP_RISE_RATIO: 0.5}, SIDE_FULL).risk is RiskLevel.LOW
    engine = FeedbackRuleEngine([_rule("imp", "hipRiseRatio", "gt", 0.1)])
    assert engine.evaluate({Metric.HIP_RISE_RATIO: 0.5}, SIDE_FULL).risk is RiskLevel.MEDIUM


def test_score_is_clamped():
    rules = [_rule(f"c{i}", "backAngle", "lt", 150, severity="critical") for i in range(4)]
    assert score_for(rules) == 0


def test_unresolved_metric_or_operator_never_matches():
    rules = [
        _rule("ghost", "wristTwist", "gt", 0.0),
        _rule("badop", "backAngle", "between", 0.0),
        _rule("absent", "kneeValgus", "gt", 0.0),
    ]
    result = FeedbackRuleEngine(rules).evaluate({Metric.BACK_ANGLE: 100.0}, SIDE_FULL)
    assert result.matched == ()


def test_operator_aliases():
    rules = [
        _rule("g", "backAngle", "greaterThan", 100),
        _rule("l", "backAngle", "<", 200),
    ]
    result = FeedbackRuleEngine(rules).evaluate({Metric.BACK_ANGLE: 150.0}, SIDE_FULL)
    assert result.matched_ids == ["g", "l"]


def test_calibration_raises_threshold():
    rule = _rule("flare", "elbowFlareRatio", "gt", 0.6, tags=["pushup", "front"])
    engine = FeedbackRuleEngine([rule])
    values = {Metric.ELBOW_FLARE_RATIO: 0.7}
    assert engine.evaluate(values, FRONT_ARMS).matched_ids == ["flare"]

    baseline = CalibrationBaseline(extrema={Metric.ELBOW_FLARE_RATIO: 0.65}, primary_min=80, primary_max=170)
    assert engine.evaluate(values, FRONT_ARMS, baseline).matched == ()
