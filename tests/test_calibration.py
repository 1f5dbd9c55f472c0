import pytest

from rep_engine.calibration import (
    CalibrationBaseline,
    CalibrationTracker,
    Sensitivity,
    effective_threshold,
    severity_multiplier,
)
from rep_engine.exercise_config import FeedbackRule, Metric, Severity
from rep_engine.phase_detector import RepRecord


def _rule(metric, threshold, severity="important", op="gt"):
    return FeedbackRule(id=metric, severity=severity, message=metric, metric=metric, op=op, threshold=threshold)


def _record(min_angle, max_angle):
    record = RepRecord(start_ms=0, end_ms=1000)
    record.update({Metric.ELBOW_FLEXION: max_angle})
    record.update({Metric.ELBOW_FLEXION: min_angle})
    return record


@pytest.mark.parametrize("sensitivity, important, critical", [
    (Sensitivity.RELAXED, 1.30, 1.50),
    (Sensitivity.NORMAL, 1.20, 1.35),
    (Sensitivity.STRICT, 1.10, 1.20),
])
def test_severity_multipliers(sensitivity, important, critical):
    assert severity_multiplier(Severity.IMPORTANT, sensitivity) == important
    assert severity_multiplier(Severity.CRITICAL, sensitivity) == critical
    assert severity_multiplier(Severity.MINOR, sensitivity) == 1.0


def test_no_baseline_uses_static_threshold():
    assert effective_threshold(_rule("hipDropRatio", 0.22), None, Sensitivity.NORMAL) == 0.22


def test_scaled_threshold_never_below_static():
    baseline = CalibrationBaseline(extrema={Metric.HIP_DROP_RATIO: 0.3}, primary_min=80, primary_max=170)
    rule = _rule("hipDropRatio", 0.30, severity="critical")
    assert effective_threshold(rule, baseline, Sensitivity.NORMAL) == pytest.approx(0.405)

    small = CalibrationBaseline(extrema={Metric.HIP_DROP_RATIO: 0.05}, primary_min=80, primary_max=170)
    assert effective_threshold(rule, small, Sensitivity.NORMAL) == 0.30


def test_depth_progress_threshold_uses_margin():
    baseline = CalibrationBaseline(extrema={Metric.DEPTH_PROGRESS: 0.9}, primary_min=80, primary_max=170)
    rule = _rule("depthProgress", 0.6, op="lt")
    assert effective_threshold(rule, baseline, Sensitivity.STRICT) == pytest.approx(0.8)


def test_uncalibrated_metric_keeps_static_threshold():
    baseline = CalibrationBaseline(extrema={Metric.HIP_DROP_RATIO: 0.3}, primary_min=80, primary_max=170)
    assert effective_threshold(_rule("backAngle", 150, op="lt"), baseline, Sensitivity.NORMAL) == 150
    assert effective_threshold(_rule("nonsense", 1.0), baseline, Sensitivity.NORMAL) == 1.0


def test_baseline_freezes_after_k_reps():
    tracker = CalibrationTracker(Metric.ELBOW_FLEXION, target_reps=3)
    for i in range(3):
        assert tracker.baseline is None
        tracker.observe(_record(90 - i, 170 + i), {Metric.HIP_DROP_RATIO: 0.1 * (i + 1), Metric.DEPTH_PROGRESS: 0.8})

    frozen = tracker.baseline
    assert tracker.is_complete
    assert frozen.get(Metric.HIP_DROP_RATIO) == pytest.approx(0.3)
    assert frozen.primary_min == 88
    assert frozen.primary_max == 172
    snapshot = (dict(frozen.extrema), frozen.primary_min, frozen.primary_max)

    for i in range(5):
        tracker.observe(_record(40, 200), {Metric.HIP_DROP_RATIO: 5.0 + i, Metric.DEPTH_PROGRESS: 0.1})

    assert tracker.baseline is frozen
    assert (dict(frozen.extrema), frozen.primary_min, frozen.primary_max) == snapshot
    assert tracker.reps_observed == 3


def test_zero_calibration_reps_disables_calibration():
    tracker = CalibrationTracker(Metric.KNEE_ANGLE, target_reps=0)
    assert tracker.is_complete
    assert tracker.observe(_record(80, 170), {}) is None
