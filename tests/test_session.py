from rep_engine.exercise_config import FeedbackRule
from rep_engine.feedback_rules import FeedbackResult, RiskLevel, score_for
from rep_engine.session import SessionAggregator


def _result(*rules):
    return FeedbackResult(matched=tuple(rules), message="", secondary="", risk=RiskLevel.LOW,
                          score=score_for(rules))


def _rule(severity, message):
    return FeedbackRule(id=message, severity=severity, message=message, metric="backAngle", op="lt",
                        threshold=150)


def test_aggregates_scores_and_issues():
    agg = SessionAggregator(target_reps=10)
    agg.add_rep(_result())
    agg.add_rep(_result(_rule("critical", "Lift hips")))
    agg.add_rep(_result(_rule("important", "Tuck elbows in"), _rule("critical", "Lift hips")))

    assert agg.rep_scores == [100, 65, 50]
    assert agg.overall_score == 72
    assert agg.clean_reps == 1
    assert agg.last_score == 50
    assert agg.issue_counts["Lift hips"] == 2
    assert not agg.is_complete


def test_summary_frozen_at_target():
    agg = SessionAggregator(target_reps=2)
    assert agg.add_rep(_result(_rule("important", "Slow down the tempo"))) is None
    summary = agg.add_rep(_result())

    assert summary is not None and agg.is_complete
    assert summary.total_reps == 2
    assert summary.average_score == 92
    assert summary.clean_reps == 2
    assert summary.best_rep_score == 100
    assert summary.worst_rep_score == 85
    assert summary.most_frequent_issue == "Slow down the tempo"

    assert agg.add_rep(_result(_rule("critical", "Lift hips"))) is None
    assert agg.rep_count == 2
    assert agg.summary is summary


def test_empty_session():
    agg = SessionAggregator()
    assert agg.overall_score == 0
    assert agg.last_score == 0
