import pytest

from rep_engine.exercise_config import ExerciseConfig, Metric, default_config
from rep_engine.exercise_config import ExerciseKind
from rep_engine.phase_detector import (
    DeclarativeRepDetector,
    RepEvent,
    RepRecord,
    ThresholdRepDetector,
    create_rep_detector,
)
from tests.synthetic import angle_track, rep_keyframes


def _feed(detector, track, view="side", snapshot=None):
    events = []
    for ts, angle in track:
        snap = dict(snapshot or {})
        snap.setdefault(Metric.ELBOW_FLEXION, angle)
        events.append(detector.update(angle, ts, view, snap))
    return events


def _fsm_config():
    raw = default_config(ExerciseKind.PUSHUP).model_dump(by_alias=True)
    raw["fsm"] = {
        "side": {
            "stateOrder": ["start", "down", "up"],
            "states": {
                "start": {"condition": "angle >= 160"},
                "down": {"condition": "angle < 100"},
                "up": {"condition": "angle >= 100 & angle < 160 & velocity > 0"},
            },
            "counter": {"from": "down", "to": "up"},
            "minRepDurationSec": 0.2,
        }
    }
    return ExerciseConfig.model_validate(raw)


def test_threshold_detector_counts_one_rep():
    detector = ThresholdRepDetector(default_config(ExerciseKind.PUSHUP))
    events = _feed(detector, angle_track(rep_keyframes(1)))
    assert events.count(RepEvent.STARTED) == 1
    assert events.count(RepEvent.COMPLETED) == 1
    assert events.index(RepEvent.STARTED) < events.index(RepEvent.COMPLETED)

    record = detector.last_record
    assert record is not None and record.end_ms > record.start_ms
    assert record.minimum(Metric.ELBOW_FLEXION) == pytest.approx(80.0, abs=2.0)
    assert detector.state == ThresholdRepDetector.UP
    assert not detector.in_rep


def test_threshold_detector_counts_multiple_reps():
    detector = ThresholdRepDetector(default_config(ExerciseKind.PUSHUP))
    events = _feed(detector, angle_track(rep_keyframes(3)))
    assert events.count(RepEvent.COMPLETED) == 3


def test_requires_lockout_hold_before_arming():
    detector = ThresholdRepDetector(default_config(ExerciseKind.PUSHUP))
    # 처음부터 lockout 아래에서 시작하면 무장되지 않아 반복이 시작되지 않는다
    keys = [(0, 150.0), (300, 150.0), (800, 80.0), (1500, 80.0), (2000, 150.0)]
    events = _feed(detector, angle_track(keys))
    assert RepEvent.STARTED not in events
    assert not detector.armed


def test_disarms_at_rep_start():
    detector = ThresholdRepDetector(default_config(ExerciseKind.PUSHUP))
    for ts, angle in angle_track(rep_keyframes(1)):
        if detector.update(angle, ts, "side", {}) is RepEvent.STARTED:
            assert not detector.armed
            assert detector.in_rep
            break
    else:
        pytest.fail("rep never started")


def test_reset_returns_to_initial_state():
    detector = ThresholdRepDetector(default_config(ExerciseKind.PUSHUP))
    track = angle_track(rep_keyframes(1))
    _feed(detector, track[: len(track) // 2])
    detector.reset()
    assert detector.state == ThresholdRepDetector.UP
    assert not detector.armed
    assert not detector.in_rep
    assert detector.angle is None


def test_rep_record_aggregate():
    record = RepRecord(start_ms=0)
    record.update({Metric.BACK_ANGLE: 170.0, Metric.HIP_DROP_RATIO: 0.1, Metric.HIPS_VISIBLE: 1.0})
    record.update({Metric.BACK_ANGLE: 150.0, Metric.HIP_DROP_RATIO: 0.3, Metric.HIPS_VISIBLE: 0.0})
    record.update({Metric.BACK_ANGLE: 160.0, Metric.HIP_DROP_RATIO: 0.2, Metric.HIPS_VISIBLE: 1.0})
    record.end_ms = 1500
    values = record.aggregate()
    assert values[Metric.BACK_ANGLE] == 150.0
    assert values[Metric.HIP_DROP_RATIO] == 0.3
    assert values[Metric.HIPS_VISIBLE] == 0.0
    assert record.duration_sec == pytest.approx(1.5)


def test_factory_picks_strategy():
    assert isinstance(create_rep_detector(default_config(ExerciseKind.PUSHUP)), ThresholdRepDetector)
    assert isinstance(create_rep_detector(_fsm_config()), DeclarativeRepDetector)


def test_declarative_detector_counts_once_per_cycle():
    detector = DeclarativeRepDetector(_fsm_config())
    events = _feed(detector, angle_track(rep_keyframes(2)))
    assert events.count(RepEvent.STARTED) == 2
    assert events.count(RepEvent.COMPLETED) == 2
    assert detector.state == "start"


def test_declarative_min_duration_blocks_fast_cycle():
    config = _fsm_config()
    raw = config.model_dump(by_alias=True)
    raw["fsm"]["side"]["minRepDurationSec"] = 5.0
    detector = DeclarativeRepDetector(ExerciseConfig.model_validate(raw))
    events = _feed(detector, angle_track(rep_keyframes(1)))
    assert RepEvent.COMPLETED not in events


def test_declarative_falls_back_for_view_without_fsm():
    detector = DeclarativeRepDetector(_fsm_config())
    events = _feed(detector, angle_track(rep_keyframes(1)), view="front")
    assert events.count(RepEvent.COMPLETED) == 1
    assert detector.state in ("UP", "DOWN")


def test_rep_record_ignores_non_finite_values():
    record = RepRecord(start_ms=0)
    record.update({Metric.ELBOW_FLEXION: 120.0})
    record.update({Metric.ELBOW_FLEXION: float("nan")})
    record.update({Metric.ELBOW_FLEXION: 90.0})
    assert record.minimum(Metric.ELBOW_FLEXION) == 90.0
    assert record.maximum(Metric.ELBOW_FLEXION) == 120.0


def test_detector_waits_for_first_finite_angle():
    detector = ThresholdRepDetector(default_config(ExerciseKind.PUSHUP))
    assert detector.update(float("nan"), 0, "side", {}) is RepEvent.NONE
    assert detector.angle is None
    events = _feed(detector, angle_track(rep_keyframes(1), start_ms=33))
    assert events.count(RepEvent.COMPLETED) == 1


@pytest.mark.parametrize("keys", [
    [(0, 170.0), (700, 170.0), (1300, 95.0), (1900, 170.0), (2600, 170.0)],
    [(0, 178.0), (700, 178.0), (850, 80.0), (1000, 178.0), (1700, 178.0)],
])
def test_side_view_counts_shallow_and_fast_cycles(keys):
    detector = ThresholdRepDetector(default_config(ExerciseKind.PUSHUP))
    events = _feed(detector, angle_track(keys))
    assert events.count(RepEvent.STARTED) == 1
    assert events.count(RepEvent.COMPLETED) == 1
